"""
Operations Layer

Business logic composed from the repositories. Each operation validates its
input, checks the access gate, performs all writes in one transaction guarded
by the ladder version, and only then announces the change.

- LadderOperations: ladder lifecycle and viewer-facing reads
- RosterOperations: manager-only roster editing
- ChallengeOperations: challenge creation, resolution and voiding
"""

from .challenge_operations import ChallengeOperations, ChallengeResolution, ChallengeListing
from .ladder_operations import LadderOperations, LadderDetail
from .roster_operations import RosterOperations

__all__ = [
    'ChallengeOperations', 'ChallengeResolution', 'ChallengeListing',
    'LadderOperations', 'LadderDetail', 'RosterOperations'
]
