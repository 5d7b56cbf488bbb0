from nphies_poll.matching.config import MatchingConfig
from nphies_poll.matching.engine import Matcher
from nphies_poll.matching.models import MatchCandidate, MatchOutcome

__all__ = ["Matcher", "MatchingConfig", "MatchCandidate", "MatchOutcome"]
