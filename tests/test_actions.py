#!/usr/bin/env python3
"""Tests for the four idle actions."""

import math
import random
import unittest

from afkbot.actions import ACTIONS, fly_up, jump_once, look_around, walk_random
from afkbot.core import GameMode, Vec3
from tests.fakes import FakeLoop, FakeSession


class ActionTestCase(unittest.TestCase):
    def setUp(self):
        self.loop = FakeLoop()
        self.rng = random.Random(99)
        self.session = FakeSession(self.loop)
        self.session.spawn(Vec3(100.5, 64.0, -40.25), GameMode.SURVIVAL)


class TestCatalog(unittest.TestCase):
    def test_four_actions_in_order(self):
        self.assertEqual(ACTIONS, (walk_random, jump_once, fly_up, look_around))


class TestWalkRandom(ActionTestCase):
    def test_goal_stays_within_twenty_blocks(self):
        seen_dx = set()
        for _ in range(2000):
            walk_random(self.session, self.rng)

        for _, x, y, z in self.session.calls_named('set_goal'):
            dx = x - math.floor(100.5)
            dz = z - math.floor(-40.25)
            self.assertLessEqual(abs(dx), 20)
            self.assertLessEqual(abs(dz), 20)
            self.assertEqual(y, 64)
            seen_dx.add(dx)

        self.assertIn(-20, seen_dx)
        self.assertIn(20, seen_dx)

    def test_announces_target(self):
        walk_random(self.session, self.rng)
        message = self.session.calls_named('chat')[0][1]
        self.assertRegex(message, r'^Walking to -?\d+\.\d, -?\d+\.\d$')

    def test_rejected_chat_still_walks(self):
        self.session.reject_chat = True
        walk_random(self.session, self.rng)
        self.assertEqual(len(self.session.calls_named('set_goal')), 1)


class TestJumpOnce(ActionTestCase):
    def test_holds_jump_for_half_a_second(self):
        jump_once(self.session, self.rng)
        self.assertEqual(self.session.calls_named('set_control_state'), [('set_control_state', 'jump', True)])

        self.loop.advance(0.49)
        self.assertEqual(len(self.session.calls_named('set_control_state')), 1)

        self.loop.advance(0.02)
        self.assertEqual(self.session.calls_named('set_control_state')[-1], ('set_control_state', 'jump', False))

    def test_jumps_in_any_game_mode(self):
        self.session.game_mode = GameMode.ADVENTURE
        jump_once(self.session, self.rng)
        self.assertIn(('chat', 'Jump!'), self.session.calls)
        self.assertEqual(len(self.session.calls_named('set_control_state')), 1)

    def test_release_skipped_after_session_end(self):
        jump_once(self.session, self.rng)
        self.session.end()
        self.loop.advance(1)

        self.assertEqual(len(self.session.calls_named('set_control_state')), 1)
        self.assertEqual(self.loop.errors, [])


class TestFlyUp(ActionTestCase):
    def test_creative_holds_jump_for_three_seconds(self):
        self.session.game_mode = GameMode.CREATIVE
        fly_up(self.session, self.rng)
        self.assertIn(('chat', 'Flying up!'), self.session.calls)

        self.loop.advance(2.9)
        self.assertEqual(self.session.calls_named('set_control_state'), [('set_control_state', 'jump', True)])

        self.loop.advance(0.2)
        self.assertEqual(self.session.calls_named('set_control_state')[-1], ('set_control_state', 'jump', False))

    def test_non_creative_only_announces(self):
        for mode in (GameMode.SURVIVAL, GameMode.ADVENTURE, GameMode.SPECTATOR, None):
            self.session.calls.clear()
            self.session.game_mode = mode
            fly_up(self.session, self.rng)
            self.loop.advance(5)

            self.assertEqual(self.session.calls, [('chat', "Can't fly here")])
            self.assertEqual(self.loop.pending(), [])


class TestLookAround(ActionTestCase):
    def test_orientation_within_bounds(self):
        for _ in range(2000):
            look_around(self.session, self.rng)

        for _, yaw, pitch, force in self.session.calls_named('look'):
            self.assertGreaterEqual(yaw, 0)
            self.assertLess(yaw, 2 * math.pi)
            self.assertLessEqual(abs(pitch), math.pi / 6 + 1e-12)
            self.assertTrue(force)

    def test_does_not_chat(self):
        look_around(self.session, self.rng)
        self.assertEqual(self.session.calls_named('chat'), [])


if __name__ == '__main__':
    unittest.main()
