from .user import User
from .challenge import Challenge
from .reward import ChallengeReward
from .bet import Bet, ChallengeBet
from .payout import Payout

__all__ = [
    "User",
    "Challenge",
    "ChallengeReward",
    "Bet",
    "ChallengeBet",
    "Payout",
]
