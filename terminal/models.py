"""Data models for the faction terminal.

Every document model converts to and from the plain dicts kept in the
document store. ``from_dict`` ignores keys it does not know so older documents
keep loading after a field is dropped.
"""

from dataclasses import dataclass, field, fields, asdict
from typing import Optional, List, Dict, Any, Union

# Attribute effect operators
ADD = "add"
MULTIPLY = "multiply"
DICE = "dice"

# Triggered effect types
HEAL = "heal"
DAMAGE_ENEMY = "damage_enemy"
ATK_BUFF = "atk_buff"
DEF_BUFF = "def_buff"
HP_COST = "hp_cost"

# Item type tags
EQUIPMENT = "equipment"
CONSUMABLE = "consumable"
SPECIAL = "special"
STAT_BOOST = "stat_boost"

# Encounter lifecycle, in order; status never moves backwards
PREPARING = "preparing"
ACTIVE = "active"
ENDED = "ended"
CLOSED = "closed"
BATTLE_STATUSES = (PREPARING, ACTIVE, ENDED, CLOSED)

# Combat log types
PLAYER_ATTACK = "player_attack"
ITEM_USED = "item_used"
SKILL_USED = "skill_used"

# Task statuses
PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"


def _known(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in (data or {}).items() if key in names}


@dataclass
class AttributeEffect:
    """Flat, multiplicative or dice modifier to an attribute."""
    attribute: str  # 'hp', 'atk' or 'def'
    operator: str
    value: float


@dataclass
class TriggeredEffect:
    """Probability-gated one-shot effect."""
    effect_type: str
    value: int
    probability: float = 100
    duration: Optional[int] = None
    trigger: str = "on_use"


Effect = Union[AttributeEffect, TriggeredEffect]


def effect_from_dict(data: Dict[str, Any]) -> Effect:
    if "attribute" in data:
        return AttributeEffect(**_known(AttributeEffect, data))
    return TriggeredEffect(**_known(TriggeredEffect, data))


@dataclass
class ActiveBuff:
    effect_type: str
    value: float
    turns_left: int
    source: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActiveBuff":
        return cls(**_known(cls, data))


@dataclass
class User:
    """A registered player character."""
    id: str
    role_name: str
    faction_id: str
    race_id: str
    approved: bool = False
    honor_points: int = 0
    currency: int = 0
    total_currency_earned: int = 0
    attributes: Dict[str, int] = field(default_factory=dict)
    items: Dict[str, int] = field(default_factory=dict)
    titles: List[str] = field(default_factory=list)
    tasks: List[Dict[str, str]] = field(default_factory=list)
    item_use_count: Dict[str, int] = field(default_factory=dict)
    participated_battle_ids: List[str] = field(default_factory=list)
    hp_zero_count: int = 0
    submitted_main_quest: bool = False
    registration_date: Optional[str] = None

    @property
    def max_hp(self) -> int:
        return int(self.attributes.get("hp", 0))

    def item_count(self, item_id: str) -> int:
        return self.items.get(item_id, 0)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(**_known(cls, data))


@dataclass
class Item:
    id: str
    name: str
    item_type: str
    description: str = ""
    price: int = 0
    faction_id: str = "wanderer"
    race_id: str = "all"
    is_published: bool = False
    image_url: str = ""
    effects: List[Effect] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Item":
        kwargs = _known(cls, data)
        kwargs["effects"] = [effect_from_dict(e) for e in kwargs.get("effects", [])]
        return cls(**kwargs)


@dataclass
class Skill:
    id: str
    name: str
    description: str = ""
    cooldown: int = 0
    faction_id: str = "wanderer"
    race_id: str = "all"
    effects: List[TriggeredEffect] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Skill":
        kwargs = _known(cls, data)
        kwargs["effects"] = [TriggeredEffect(**_known(TriggeredEffect, e)) for e in kwargs.get("effects", [])]
        return cls(**kwargs)


@dataclass
class Monster:
    id: str
    name: str
    hp: int
    original_hp: int
    atk: str = "0"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Monster":
        return cls(**_known(cls, data))


@dataclass
class Participant:
    """A user's combat state inside one encounter."""
    hp: int
    max_hp: int
    role_name: str
    faction_id: str
    equipped_items: List[str] = field(default_factory=list)
    active_buffs: List[ActiveBuff] = field(default_factory=list)
    skill_cooldowns: Dict[str, int] = field(default_factory=dict)
    supported_faction: Optional[str] = None

    @classmethod
    def for_user(cls, user: User) -> "Participant":
        return cls(hp=user.max_hp, max_hp=user.max_hp, role_name=user.role_name, faction_id=user.faction_id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Participant":
        kwargs = _known(cls, data)
        kwargs["active_buffs"] = [ActiveBuff.from_dict(b) for b in kwargs.get("active_buffs", [])]
        return cls(**kwargs)


@dataclass
class RewardBundle:
    honor_points: int = 0
    currency: int = 0
    item_id: Optional[str] = None
    title_id: Optional[str] = None
    log_message: str = ""

    def is_empty(self) -> bool:
        return not (self.honor_points or self.currency or self.item_id or self.title_id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RewardBundle":
        return cls(**_known(cls, data))


@dataclass
class CombatEncounter:
    id: str
    name: str
    status: str = PREPARING
    monsters: List[Monster] = field(default_factory=list)
    participants: Dict[str, Participant] = field(default_factory=dict)
    turn: int = 0
    start_time: Optional[str] = None
    preparation_end_time: Optional[str] = None
    end_time: Optional[str] = None
    end_of_battle_rewards: Optional[RewardBundle] = None

    def find_monster(self, monster_id: str) -> Optional[Monster]:
        for monster in self.monsters:
            if monster.id == monster_id:
                return monster
        return None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CombatEncounter":
        kwargs = _known(cls, data)
        kwargs["monsters"] = [Monster.from_dict(m) for m in kwargs.get("monsters", [])]
        kwargs["participants"] = {
            user_id: Participant.from_dict(p) for user_id, p in kwargs.get("participants", {}).items()
        }
        if kwargs.get("end_of_battle_rewards"):
            kwargs["end_of_battle_rewards"] = RewardBundle.from_dict(kwargs["end_of_battle_rewards"])
        return cls(**kwargs)


@dataclass
class Title:
    id: str
    name: str
    description: str = ""
    hidden: bool = False
    is_manual: bool = False
    trigger: Optional[Dict[str, Any]] = None  # parsed by titles.trigger_from_dict

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Title":
        return cls(**_known(cls, data))


@dataclass
class CombatLog:
    """Append-only record of one action inside an encounter."""
    id: str
    encounter_id: str
    message: str
    turn: int
    type: str
    user_id: Optional[str] = None
    user_faction: Optional[str] = None
    item_id: Optional[str] = None
    damage: Optional[int] = None
    timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CombatLog":
        return cls(**_known(cls, data))


@dataclass
class ActivityLog:
    id: str
    user_id: str
    description: str
    change: str
    timestamp: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivityLog":
        return cls(**_known(cls, data))


@dataclass
class TaskType:
    id: str
    name: str
    category: str = "general"  # 'main', 'side' or 'general'
    description: str = ""
    honor_points: int = 0
    currency: int = 0
    title_awarded: Optional[str] = None
    item_awarded: Optional[str] = None
    requires_approval: bool = False
    single_submission: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskType":
        return cls(**_known(cls, data))


@dataclass
class Task:
    id: str
    user_id: str
    user_name: str
    user_faction_id: str
    task_type_id: str
    title: str
    submission_url: str
    honor_points_awarded: int = 0
    currency_awarded: int = 0
    status: str = PENDING
    faction_contribution: Optional[str] = None
    submission_date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        return cls(**_known(cls, data))


@dataclass
class CraftRecipe:
    id: str
    name: str
    base_item_id: str
    material_item_id: str
    target_item_id: str
    is_published: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CraftRecipe":
        return cls(**_known(cls, data))


@dataclass
class FactionTally:
    raw_score: int = 0
    active_players: List[str] = field(default_factory=list)


@dataclass
class Season:
    id: str = "current"
    start_date: Optional[str] = None
    factions: Dict[str, FactionTally] = field(default_factory=dict)

    def tally(self, faction_id: str) -> FactionTally:
        return self.factions.setdefault(faction_id, FactionTally())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Season":
        kwargs = _known(cls, data)
        kwargs["factions"] = {
            faction_id: FactionTally(**_known(FactionTally, tally))
            for faction_id, tally in kwargs.get("factions", {}).items()
        }
        return cls(**kwargs)


@dataclass
class ActionResult:
    """Result of performing a game action."""
    success: bool
    message: str
    public_message: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def error(self) -> Optional[str]:
        return None if self.success else self.message
