#!/usr/bin/env python3
"""
三角形分割リトライ状態機械

初回試行 → 段階的ダウンサンプリング（比率ごと） → フォールバック → 終了
という再試行ポリシーを、純粋な遷移関数として表現します。
状態遷移は入力（試行の成否と比率の数）のみで決まり、副作用を持ちません。
"""

from dataclasses import dataclass
from enum import Enum


class RetryPhase(Enum):
    """リトライ状態"""
    INITIAL = "initial"                        # 初回（ダウンサンプリングなし/上限適用のみ）
    DOWNSAMPLED = "downsampled"                # 段階的ダウンサンプリング attempt 回目
    FALLBACK_ATTEMPTED = "fallback_attempted"  # コーナー点フォールバック
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


TERMINAL_PHASES = frozenset({RetryPhase.SUCCEEDED, RetryPhase.EXHAUSTED})


@dataclass(frozen=True)
class RetryState:
    """リトライ状態（attempt は段階的比率のインデックス、初回は -1）"""
    phase: RetryPhase = RetryPhase.INITIAL
    attempt: int = -1

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    @property
    def triangulates_directly(self) -> bool:
        """通常の三角形分割を行う状態か（フォールバック以外の試行）"""
        return self.phase in (RetryPhase.INITIAL, RetryPhase.DOWNSAMPLED)

    def describe(self) -> str:
        if self.phase == RetryPhase.DOWNSAMPLED:
            return f"{self.phase.value}({self.attempt})"
        return self.phase.value


def initial_state() -> RetryState:
    return RetryState(RetryPhase.INITIAL, -1)


def advance(state: RetryState, succeeded: bool, num_ratios: int) -> RetryState:
    """
    試行結果から次の状態を求める

    Args:
        state: 現在の状態（終端状態は不可）
        succeeded: 現在の状態での試行が成功したか
        num_ratios: 段階的比率の数

    Returns:
        次の状態

    Raises:
        ValueError: 終端状態から遷移しようとした
    """
    if state.is_terminal:
        raise ValueError(f"Cannot advance from terminal state {state.describe()}")
    if num_ratios < 0:
        raise ValueError(f"num_ratios must be non-negative, got {num_ratios}")

    if succeeded:
        return RetryState(RetryPhase.SUCCEEDED, state.attempt)

    if state.phase == RetryPhase.FALLBACK_ATTEMPTED:
        return RetryState(RetryPhase.EXHAUSTED, state.attempt)

    next_attempt = state.attempt + 1
    if next_attempt < num_ratios:
        return RetryState(RetryPhase.DOWNSAMPLED, next_attempt)
    return RetryState(RetryPhase.FALLBACK_ATTEMPTED, state.attempt)


def max_triangulation_attempts(num_ratios: int) -> int:
    """フォールバックを除く三角形分割の最大試行回数（初回 + 比率の数）"""
    return num_ratios + 1
