"""Models package."""

from .user import User
from .account import Account
from .ledger_operation import LedgerOperation
from .recharge_record import RechargeRecord
from .consumption_record import ConsumptionRecord
from .withdrawal_record import WithdrawalRecord
from .artifact import Artifact
from .artifact_grant import ArtifactGrant
