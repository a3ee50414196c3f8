"""Embed formatting for the faction terminal."""

from typing import Any, Dict, List

import discord

from .config import FACTIONS, RACES, WANDERER
from .models import ActivityLog, CombatEncounter, CraftRecipe, Item, Title, User


def _faction_name(faction_id: str) -> str:
    return FACTIONS.get(faction_id, {}).get("name", faction_id)


def _faction_color(faction_id: str) -> int:
    return FACTIONS.get(faction_id, {}).get("color", 0x808080)


def _hp_bar(hp: int, max_hp: int, width: int = 10) -> str:
    if max_hp <= 0:
        return "░" * width
    filled = round(width * max(0, hp) / max_hp)
    return "█" * filled + "░" * (width - filled)


class TerminalView:
    """Handles formatting of game displays."""

    def format_profile(self, user: User, titles: Dict[str, Title], items: Dict[str, Item]) -> discord.Embed:
        race = RACES.get(user.race_id, {})
        embed = discord.Embed(
            title=f"📟 {user.role_name}",
            description=f"{_faction_name(user.faction_id)} · {race.get('name', user.race_id)}",
            color=_faction_color(user.faction_id),
        )
        if not user.approved:
            embed.set_footer(text="⏳ Waiting for administrator approval")

        embed.add_field(name="Honor", value=str(user.honor_points), inline=True)
        embed.add_field(name="Currency", value=str(user.currency), inline=True)
        stats = " / ".join(f"{key.upper()} {user.attributes.get(key, 0)}" for key in ("hp", "atk", "def"))
        embed.add_field(name="Stats", value=stats, inline=True)

        visible = [titles[t].name for t in user.titles if t in titles and not titles[t].hidden]
        embed.add_field(name="Titles", value=", ".join(visible) or "None yet", inline=False)

        inventory = [f"{items[i].name if i in items else i} ×{count}" for i, count in user.items.items()]
        embed.add_field(name="Inventory", value="\n".join(inventory) or "Empty", inline=False)
        return embed

    def format_battle(self, battle: CombatEncounter) -> discord.Embed:
        embed = discord.Embed(
            title=f"⚔️ {battle.name}",
            description=f"Status: **{battle.status}** · Turn {battle.turn}",
            color=0xB22222,
        )
        for monster in battle.monsters:
            state = "💀 Defeated" if monster.hp <= 0 else f"{_hp_bar(monster.hp, monster.original_hp)} {monster.hp}/{monster.original_hp}"
            embed.add_field(name=f"{monster.name} (`{monster.id[:8]}`)", value=state, inline=False)

        fighters = sorted(battle.participants.values(), key=lambda p: p.hp, reverse=True)
        if fighters:
            lines = [f"{p.role_name}: {p.hp}/{p.max_hp}" for p in fighters[:15]]
            if len(fighters) > 15:
                lines.append(f"...and {len(fighters) - 15} more")
            embed.add_field(name="Fighters", value="\n".join(lines), inline=False)
        embed.set_footer(text=f"Battle id: {battle.id}")
        return embed

    def format_conflict(self, factions: Dict[str, Dict[str, Any]]) -> discord.Embed:
        embed = discord.Embed(title="🏴 Faction Conflict", color=0x4B0082)
        for faction_id, standing in factions.items():
            embed.add_field(
                name=_faction_name(faction_id),
                value=(f"Raw score: {standing['raw_score']}\n"
                       f"Active players: {standing['active_players']}\n"
                       f"Weight: {standing['weight']:.2f}\n"
                       f"**Weighted: {standing['weighted_score']}**"),
                inline=True,
            )
        return embed

    def format_roster(self, roster: Dict[str, List[Dict[str, Any]]]) -> discord.Embed:
        embed = discord.Embed(title="📜 Roster", color=0x2F4F4F)
        for faction_id, members in roster.items():
            lines = [f"{m['role_name']} ({m['honor_points']})" for m in members[:20]]
            if len(members) > 20:
                lines.append(f"...and {len(members) - 20} more")
            label = _faction_name(faction_id)
            if faction_id == WANDERER:
                label += " (unscored)"
            embed.add_field(name=f"{label} · {len(members)}", value="\n".join(lines) or "Nobody yet", inline=True)
        return embed

    def format_shop(self, items: List[Item]) -> discord.Embed:
        embed = discord.Embed(title="🛒 Shop", color=0xDAA520)
        if not items:
            embed.description = "Nothing is on sale right now."
            return embed
        for item in items[:25]:
            embed.add_field(
                name=f"{item.name} · {item.price}",
                value=f"`{item.id}` {item.item_type}\n{item.description or ''}".strip(),
                inline=False,
            )
        return embed

    def format_recipes(self, recipes: List[CraftRecipe], items: Dict[str, Item]) -> discord.Embed:
        embed = discord.Embed(title="🔨 Recipes", color=0x8B4513)
        if not recipes:
            embed.description = "No recipes are available."
            return embed

        def name(item_id):
            return items[item_id].name if item_id in items else item_id

        for recipe in recipes[:25]:
            embed.add_field(
                name=f"{recipe.name} (`{recipe.id}`)",
                value=f"{name(recipe.base_item_id)} + {name(recipe.material_item_id)} → {name(recipe.target_item_id)}",
                inline=False,
            )
        return embed

    def format_damage_stats(self, battle_name: str, stats: List[Dict[str, Any]]) -> discord.Embed:
        embed = discord.Embed(title=f"📊 Damage in {battle_name}", color=0xB22222)
        lines = [
            f"{rank}. {entry['role_name']} ({_faction_name(entry['faction_id'])}): {entry['total_damage']}"
            for rank, entry in enumerate(stats[:20], start=1)
        ]
        embed.description = "\n".join(lines) or "No damage recorded yet."
        return embed

    def format_activity(self, logs: List[ActivityLog]) -> discord.Embed:
        embed = discord.Embed(title="🗒️ Recent activity", color=0x708090)
        lines = [f"**{log.description}** · {log.change}" for log in logs]
        embed.description = "\n".join(lines) or "Nothing yet."
        return embed

    def format_error(self, message: str) -> discord.Embed:
        """Format an error message."""
        return discord.Embed(title="❌ Error", description=message, color=0xff0000)

    def format_success(self, message: str) -> discord.Embed:
        """Format a success message."""
        return discord.Embed(title="✅ Success", description=message, color=0x00ff00)
