from wa_checkpoints.db.models.instance import GatewayInstance, InstanceStatus
from wa_checkpoints.db.models.flow_config import FlowConfig
from wa_checkpoints.db.models.conversation import Conversation, ConversationStatus, OPEN_STATUSES
from wa_checkpoints.db.models.message import MessageRecord, Direction

__all__ = [
    "GatewayInstance",
    "InstanceStatus",
    "FlowConfig",
    "Conversation",
    "ConversationStatus",
    "OPEN_STATUSES",
    "MessageRecord",
    "Direction",
]
