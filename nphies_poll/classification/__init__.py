from nphies_poll.classification.classifier import ClassifiedMessage, classify, fingerprint

__all__ = ["ClassifiedMessage", "classify", "fingerprint"]
