"""SQLAlchemy models package."""

from .customer import Customer  # noqa: F401
from .mirrors import SquareBooking, SquareOrder, SquarePayment  # noqa: F401
from .process_run import (  # noqa: F401
    ProcessRun,
    ProcessStatus,
    ProcessType,
    RecordedProcessRun,
    record_process_run,
    update_process_run,
)
from .referral import GiftCardReward, ReferralClick, RewardStatus, RewardType  # noqa: F401
from .wallet import DevicePassRegistration  # noqa: F401
