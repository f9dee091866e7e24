#!/usr/bin/env python3
"""Tests for the connection supervisor: reconnect timing, single session, scheduler cleanup."""

import random
import unittest

from afkbot.core import SessionState
from afkbot.supervisor import AgentContext, ConnectionSupervisor
from afkbot.utils import get_config_from_env
from tests.fakes import FakeLoop, SessionRecorder


class SupervisorTestCase(unittest.TestCase):
    def setUp(self):
        self.loop = FakeLoop()
        self.context = AgentContext(get_config_from_env({}), self.loop, random.Random(7))
        self.factory = SessionRecorder(self.loop)
        self.supervisor = ConnectionSupervisor(self.context, session_factory=self.factory)

    def active_sessions(self):
        return [s for s in self.factory.sessions if s.state is not SessionState.ENDED]


class TestStart(SupervisorTestCase):
    def test_creates_and_connects_one_session(self):
        self.supervisor.start()
        self.assertEqual(len(self.factory.sessions), 1)
        self.assertTrue(self.factory.latest.connected)
        self.assertIs(self.context.session, self.factory.latest)

    def test_refuses_second_start_while_session_alive(self):
        self.supervisor.start()
        self.supervisor.start()
        self.assertEqual(len(self.factory.sessions), 1)

        self.factory.latest.spawn()
        self.supervisor.start()
        self.assertEqual(len(self.factory.sessions), 1)

    def test_spawn_disables_digging_and_starts_actions(self):
        self.supervisor.start()
        session = self.factory.latest
        session.spawn()

        self.assertEqual(session.calls_named('set_movements'), [('set_movements', False)])
        self.assertTrue(self.supervisor.scheduler.running)
        self.assertIs(self.supervisor.scheduler.session, session)

    def test_factory_failure_is_retried(self):
        attempts = []

        def failing_factory(context):
            attempts.append(self.loop.time())
            if len(attempts) == 1:
                raise RuntimeError("no redis")
            return self.factory(context)

        supervisor = ConnectionSupervisor(self.context, session_factory=failing_factory)
        supervisor.start()
        self.assertTrue(supervisor.reconnect_pending)

        self.loop.advance(10)
        self.assertEqual(attempts, [0.0, 10.0])
        self.assertEqual(len(self.factory.sessions), 1)


class TestReconnect(SupervisorTestCase):
    def test_reconnects_exactly_ten_seconds_after_end(self):
        self.supervisor.start()
        self.factory.latest.end()

        self.loop.advance(9.999)
        self.assertEqual(len(self.factory.sessions), 1)

        self.loop.advance(0.001)
        self.assertEqual(len(self.factory.sessions), 2)
        self.assertEqual(self.factory.latest.created_at, 10.0)

    def test_three_consecutive_ends_give_three_spaced_attempts(self):
        self.supervisor.start()
        for _ in range(3):
            self.factory.latest.end()
            self.loop.advance(10)

        created = [s.created_at for s in self.factory.sessions]
        self.assertEqual(created, [0.0, 10.0, 20.0, 30.0])
        self.assertEqual(self.supervisor.connection_attempts, 4)

    def test_never_more_than_one_live_session(self):
        self.supervisor.start()
        for cycle in range(20):
            session = self.factory.latest
            if cycle % 2:
                session.spawn()
                self.loop.advance(25)
            session.end()
            self.assertEqual(self.active_sessions(), [])
            for _ in range(10):
                self.loop.advance(1)
                self.assertLessEqual(len(self.active_sessions()), 1)

        self.assertEqual(len(self.factory.sessions), 21)

    def test_kick_alone_does_not_reconnect(self):
        self.supervisor.start()
        self.factory.latest.kick('You are banned')

        self.loop.advance(60)
        self.assertEqual(len(self.factory.sessions), 1)
        self.assertFalse(self.supervisor.reconnect_pending)

    def test_kick_followed_by_end_reconnects_once(self):
        self.supervisor.start()
        session = self.factory.latest
        session.kick('Server closed')
        session.end()
        session.end()

        self.loop.advance(30)
        self.assertEqual(len(self.factory.sessions), 2)

    def test_end_before_spawn_reconnects(self):
        self.supervisor.start()
        self.factory.latest.end('connect ECONNREFUSED')

        self.loop.advance(10)
        self.assertEqual(len(self.factory.sessions), 2)
        self.assertFalse(self.supervisor.scheduler.running)


class TestSchedulerCleanup(SupervisorTestCase):
    def test_action_loop_stops_when_session_ends(self):
        self.supervisor.start()
        session = self.factory.latest
        session.spawn()
        self.loop.advance(30)
        self.assertGreater(len(session.calls), 1)

        session.end()
        calls_at_end = len(session.calls)
        self.assertFalse(self.supervisor.scheduler.running)

        self.loop.advance(9)
        self.assertEqual(len(session.calls), calls_at_end)
        self.assertEqual(len(self.loop.pending()), 1)  # only the reconnect

    def test_no_timer_growth_across_reconnects(self):
        self.supervisor.start()
        for _ in range(10):
            session = self.factory.latest
            session.spawn()
            self.loop.advance(40)
            session.end()
            self.loop.advance(9)
            self.assertEqual(len(self.loop.pending()), 1)
            self.loop.advance(1)

        self.assertEqual(self.loop.errors, [])

    def test_new_session_gets_fresh_action_loop(self):
        self.supervisor.start()
        first = self.factory.latest
        first.spawn()
        first.end()
        self.loop.advance(10)

        second = self.factory.latest
        self.assertIsNot(first, second)
        self.assertIsNone(self.supervisor.scheduler.session)

        second.spawn()
        self.assertIs(self.supervisor.scheduler.session, second)


class TestErrorContainment(SupervisorTestCase):
    def test_failing_spawn_handler_is_reported_not_raised(self):
        self.supervisor.start()
        session = self.factory.latest

        def broken_set_movements(can_dig):
            raise RuntimeError("boom")

        session.set_movements = broken_set_movements

        session.spawn()
        self.assertEqual(len(self.loop.errors), 1)
        self.assertIsInstance(self.loop.errors[0]['exception'], RuntimeError)

        session.end()
        self.loop.advance(10)
        self.assertEqual(len(self.factory.sessions), 2)


if __name__ == '__main__':
    unittest.main()
