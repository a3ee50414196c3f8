import random

import pytest

from terminal.effects import EffectResolver, NOTHING_HAPPENED
from terminal.errors import MissingTargetError, TargetAlreadyDefeatedError, TargetNotFoundError
from terminal.models import (
    AttributeEffect, Monster, Participant, TriggeredEffect,
    ADD, ATK_BUFF, DAMAGE_ENEMY, DEF_BUFF, DICE, HEAL, HP_COST, MULTIPLY,
)


class FixedDraw(random.Random):
    """Random whose draws in [0, 1) are fixed; dice still use the real generator."""

    def __init__(self, draw):
        super().__init__(7)
        self.draw = draw

    def random(self):
        return self.draw


def fighter(hp=50, max_hp=100):
    return Participant(hp=hp, max_hp=max_hp, role_name="Ash", faction_id="yelu")


def husk(hp=40):
    return Monster(id="m1", name="Husk", hp=hp, original_hp=40)


def test_effect_applies_only_when_draw_is_below_probability():
    heal = TriggeredEffect(HEAL, 10, probability=50)

    applied = fighter()
    EffectResolver(FixedDraw(0.49)).resolve([heal], applied, [])
    assert applied.hp == 60

    skipped = fighter()
    outcome = EffectResolver(FixedDraw(0.50)).resolve([heal], skipped, [])
    assert skipped.hp == 50
    assert outcome.fragments == [NOTHING_HAPPENED]


def test_zero_probability_never_applies_and_full_always_does():
    resolver = EffectResolver(FixedDraw(0.0))
    participant = fighter()
    resolver.resolve([TriggeredEffect(HEAL, 10, probability=0)], participant, [])
    assert participant.hp == 50
    resolver.resolve([TriggeredEffect(HEAL, 10, probability=100)], participant, [])
    assert participant.hp == 60


def test_heal_is_capped_at_max_hp():
    participant = fighter(hp=95)
    EffectResolver().resolve([TriggeredEffect(HEAL, 30)], participant, [])
    assert participant.hp == 100


def test_hp_cost_floors_at_zero():
    participant = fighter(hp=5)
    EffectResolver().resolve([TriggeredEffect(HP_COST, 30)], participant, [])
    assert participant.hp == 0


def test_damage_accumulates_and_floors_at_zero():
    monster = husk(hp=25)
    effects = [TriggeredEffect(DAMAGE_ENEMY, 15), TriggeredEffect(DAMAGE_ENEMY, 15)]
    outcome = EffectResolver().resolve(effects, fighter(), [monster], target_id="m1")
    assert monster.hp == 0
    assert outcome.total_damage == 30


def test_damage_needs_a_live_target():
    resolver = EffectResolver()
    damage = [TriggeredEffect(DAMAGE_ENEMY, 5)]
    with pytest.raises(MissingTargetError):
        resolver.resolve(damage, fighter(), [husk()])
    with pytest.raises(TargetNotFoundError):
        resolver.resolve(damage, fighter(), [husk()], target_id="nope")
    with pytest.raises(TargetAlreadyDefeatedError):
        resolver.resolve(damage, fighter(), [husk(hp=0)], target_id="m1")


def test_buffs_only_persist_with_a_duration():
    participant = fighter()
    EffectResolver().resolve(
        [TriggeredEffect(ATK_BUFF, 5, duration=3), TriggeredEffect(DEF_BUFF, 5)],
        participant, [], source="potion",
    )
    assert len(participant.active_buffs) == 1
    buff = participant.active_buffs[0]
    assert (buff.effect_type, buff.turns_left, buff.source) == (ATK_BUFF, 3, "potion")


def test_always_apply_ignores_probability():
    participant = fighter()
    EffectResolver(FixedDraw(0.99)).resolve(
        [TriggeredEffect(HEAL, 10, probability=1)], participant, [], always_apply=True
    )
    assert participant.hp == 60


def test_attribute_effects_fold_into_snapshot():
    resolver = EffectResolver(random.Random(3))
    result = resolver.apply_attributes(
        [AttributeEffect("atk", ADD, 5), AttributeEffect("atk", DICE, 6), AttributeEffect("atk", MULTIPLY, 2)],
        {"atk": 10},
    )
    assert 16 <= result["atk"] <= 21
