"""Effect resolution for items and skills.

The resolver mutates the participant and monster objects it is handed; the
caller writes them back inside its transaction.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .dice import roll_dice
from .errors import MissingTargetError, TargetNotFoundError, TargetAlreadyDefeatedError
from .models import (
    AttributeEffect, TriggeredEffect, ActiveBuff, Participant, Monster,
    ADD, DICE, HEAL, DAMAGE_ENEMY, ATK_BUFF, DEF_BUFF, HP_COST,
)

logger = logging.getLogger(__name__)

NOTHING_HAPPENED = "But nothing happened..."


@dataclass
class EffectOutcome:
    fragments: List[str] = field(default_factory=list)
    total_damage: int = 0
    attributes: Dict[str, float] = field(default_factory=dict)

    @property
    def summary(self) -> str:
        return " ".join(self.fragments)


class EffectResolver:
    """Applies effect lists to a participant and the encounter's monsters."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()
        self._handlers = {
            HEAL: self._heal,
            HP_COST: self._hp_cost,
            DAMAGE_ENEMY: self._damage_enemy,
            ATK_BUFF: self._buff,
            DEF_BUFF: self._buff,
        }

    def passes(self, probability: float) -> bool:
        """Roll a draw in [0, 100); the effect applies iff draw < probability."""
        return self.rng.random() * 100 < probability

    def apply_attributes(self, effects, attributes: Dict[str, float]) -> Dict[str, float]:
        """Fold attribute effects into a copy of ``attributes``."""
        result = dict(attributes)
        for effect in effects:
            if not isinstance(effect, AttributeEffect):
                continue
            current = result.get(effect.attribute, 0)
            if effect.operator == ADD:
                result[effect.attribute] = current + effect.value
            elif effect.operator == DICE:
                result[effect.attribute] = current + roll_dice(f"1d{int(effect.value)}", self.rng)
            # multiply is kept on the item for display only
        return result

    def resolve(self, effects, participant: Participant, monsters: List[Monster],
                target_id: Optional[str] = None, attributes: Optional[Dict[str, float]] = None,
                always_apply: bool = False, source: Optional[str] = None) -> EffectOutcome:
        """Apply ``effects`` in order.

        Triggered effects roll against their probability unless ``always_apply``
        is set (skills). A damage effect with a missing or defeated target
        raises and the caller's transaction is abandoned.
        """
        outcome = EffectOutcome(attributes=self.apply_attributes(effects, attributes or {}))

        for effect in effects:
            if not isinstance(effect, TriggeredEffect):
                continue
            if effect.trigger != "on_use":
                continue

            handler = self._handlers.get(effect.effect_type)
            if handler is None:
                logger.warning(f"Skipping unknown effect type {effect.effect_type!r}")
                continue

            if not always_apply and not self.passes(effect.probability):
                outcome.fragments.append(NOTHING_HAPPENED)
                continue

            handler(effect, participant, monsters, target_id, source, outcome)

        return outcome

    def _heal(self, effect, participant, monsters, target_id, source, outcome):
        before = participant.hp
        participant.hp = min(participant.max_hp, participant.hp + effect.value)
        outcome.fragments.append(f"Recovered {participant.hp - before} HP.")

    def _hp_cost(self, effect, participant, monsters, target_id, source, outcome):
        participant.hp = max(0, participant.hp - effect.value)
        outcome.fragments.append(f"Paid {effect.value} HP.")

    def _damage_enemy(self, effect, participant, monsters, target_id, source, outcome):
        if not target_id:
            raise MissingTargetError()
        target = next((m for m in monsters if m.id == target_id), None)
        if target is None:
            raise TargetNotFoundError()
        if target.hp <= 0:
            raise TargetAlreadyDefeatedError()

        target.hp = max(0, target.hp - effect.value)
        outcome.total_damage += effect.value
        outcome.fragments.append(f"Dealt {effect.value} damage to {target.name}.")

    def _buff(self, effect, participant, monsters, target_id, source, outcome):
        label = "attack" if effect.effect_type == ATK_BUFF else "defense"
        if not effect.duration:
            outcome.fragments.append(f"Gained {effect.value} {label} for this action.")
            return
        participant.active_buffs.append(
            ActiveBuff(effect_type=effect.effect_type, value=effect.value,
                       turns_left=effect.duration, source=source)
        )
        outcome.fragments.append(f"Gained {effect.value} {label} for {effect.duration} turns.")
