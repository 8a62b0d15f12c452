#!/usr/bin/env python3
"""
リトライ状態機械のテスト
"""

import unittest

from groundmesh.mesh.retry import (
    RetryPhase,
    RetryState,
    initial_state,
    advance,
    max_triangulation_attempts,
)


class TestRetryTransitions(unittest.TestCase):
    """状態遷移テスト"""

    def test_initial_state(self):
        state = initial_state()
        self.assertEqual(state.phase, RetryPhase.INITIAL)
        self.assertEqual(state.attempt, -1)
        self.assertTrue(state.triangulates_directly)
        self.assertFalse(state.is_terminal)

    def test_success_from_any_active_state(self):
        for state in (
            initial_state(),
            RetryState(RetryPhase.DOWNSAMPLED, 2),
            RetryState(RetryPhase.FALLBACK_ATTEMPTED, 4),
        ):
            with self.subTest(state=state.describe()):
                self.assertEqual(advance(state, True, 5).phase, RetryPhase.SUCCEEDED)

    def test_initial_failure_starts_progressive_sampling(self):
        self.assertEqual(advance(initial_state(), False, 5), RetryState(RetryPhase.DOWNSAMPLED, 0))

    def test_last_ratio_failure_goes_to_fallback(self):
        state = advance(RetryState(RetryPhase.DOWNSAMPLED, 4), False, 5)
        self.assertEqual(state.phase, RetryPhase.FALLBACK_ATTEMPTED)
        self.assertFalse(state.triangulates_directly)

    def test_fallback_failure_exhausts(self):
        state = advance(RetryState(RetryPhase.FALLBACK_ATTEMPTED, 4), False, 5)
        self.assertEqual(state.phase, RetryPhase.EXHAUSTED)
        self.assertTrue(state.is_terminal)

    def test_no_ratios_goes_straight_to_fallback(self):
        self.assertEqual(advance(initial_state(), False, 0).phase, RetryPhase.FALLBACK_ATTEMPTED)

    def test_terminal_states_cannot_advance(self):
        for phase in (RetryPhase.SUCCEEDED, RetryPhase.EXHAUSTED):
            with self.subTest(phase=phase):
                with self.assertRaises(ValueError):
                    advance(RetryState(phase, 0), False, 5)

    def test_always_failing_run_terminates(self):
        """常に失敗する場合: 初回 + 比率の数だけ分割を試み、フォールバック後に終了"""
        num_ratios = 5
        state = initial_state()
        direct_attempts = 0
        visited = []
        while not state.is_terminal:
            if state.triangulates_directly:
                direct_attempts += 1
            visited.append(state.describe())
            state = advance(state, False, num_ratios)

        self.assertEqual(direct_attempts, max_triangulation_attempts(num_ratios))
        self.assertEqual(direct_attempts, 6)
        self.assertEqual(visited[0], 'initial')
        self.assertEqual(visited[1:6], [f'downsampled({i})' for i in range(5)])
        self.assertEqual(visited[-1], 'fallback_attempted')
        self.assertEqual(state.phase, RetryPhase.EXHAUSTED)


if __name__ == '__main__':
    unittest.main()
