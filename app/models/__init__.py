from app.models.channel_credential import ChannelCredential
from app.models.conversation import Conversation, ConversationView, EligibleOperator
from app.models.customer_record import CustomerRecord, Engagement
from app.models.message import Message, MessageReceipt
from app.models.offering import Offering, ProviderOffering
from app.models.operator import Operator, OperatorProvider
from app.models.provider import Provider, ReferralCode
from app.models.routing_settings import RoutingSettings
from app.models.tenant import Tenant

__all__ = [
    "Tenant",
    "Operator",
    "OperatorProvider",
    "Provider",
    "ReferralCode",
    "Offering",
    "ProviderOffering",
    "CustomerRecord",
    "Engagement",
    "ChannelCredential",
    "Conversation",
    "EligibleOperator",
    "ConversationView",
    "Message",
    "MessageReceipt",
    "RoutingSettings",
]
