# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from typing import Sequence


class SchedulerError(Exception):
    """Base class for admission scheduler errors."""


class NoKnownCandidateError(SchedulerError, ValueError):
    """
    Raised by acquire() when none of the candidates is a configured model.

    Waiting could never succeed in that case, so the call fails fast
    instead of parking the caller forever.
    """

    def __init__(self, candidates: Sequence[str]):
        self.candidates = list(candidates)
        super().__init__(
            f"None of the candidate models {self.candidates} is configured in the scheduler"
        )
