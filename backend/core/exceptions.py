"""Risk engine exceptions"""


class RiskEngineError(Exception):
    """Base exception for the risk engine"""

    pass


class ModelNotTrainedError(RiskEngineError):
    """A model was asked to score before it was trained"""

    pass


class InsufficientDataError(RiskEngineError):
    """Not enough transaction history to train a model"""

    pass


class ProfileParseError(RiskEngineError):
    """Free-text profile blob could not be parsed"""

    pass


class TransactionNotFoundError(RiskEngineError):
    """Transaction does not exist in the repository"""

    pass


class SituationNotFoundError(RiskEngineError):
    """Situation does not exist in the repository"""

    pass


class DuplicateTransactionError(RiskEngineError):
    """Transaction id is already stored"""

    pass
