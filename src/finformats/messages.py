from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .models import CamtType


class CamtMessage(BaseModel):
    """Base de los mensajes de investigación / notificación (camt.026-039, 055-059, 087)."""

    model_config = ConfigDict(frozen=True)

    message_type: CamtType


class AssignmentBlock(BaseModel):
    """Bloque común Assgnmt + Case."""

    model_config = ConfigDict(frozen=True)

    assignment_id: Optional[str] = None
    creation_date_time: Optional[datetime] = None
    assigner_agent_bic: Optional[str] = None
    assigner_party_name: Optional[str] = None
    assignee_agent_bic: Optional[str] = None
    assignee_party_name: Optional[str] = None
    case_id: Optional[str] = None
    case_creator: Optional[str] = None


class UnderlyingBlock(BaseModel):
    """Bloque común Undrlyg/Initn: la transacción original."""

    model_config = ConfigDict(frozen=True)

    original_message_id: Optional[str] = None
    original_message_name_id: Optional[str] = None
    original_creation_date_time: Optional[datetime] = None
    original_end_to_end_id: Optional[str] = None
    original_transaction_id: Optional[str] = None
    original_interbank_settlement_amount: Optional[Decimal] = None
    original_currency: Optional[str] = None
    original_interbank_settlement_date: Optional[date] = None


# ---------------------------------------------------------------- items repetidos

class UnableToApplyReason(BaseModel):
    model_config = ConfigDict(frozen=True)

    reason_code: Optional[str] = None
    reason_proprietary: Optional[str] = None
    additional_information: Optional[str] = None
    missing_information_type: Optional[str] = None
    incorrect_information_type: Optional[str] = None


class AdditionalPaymentInformation(BaseModel):
    model_config = ConfigDict(frozen=True)

    instruction_identification: Optional[str] = None
    end_to_end_identification: Optional[str] = None
    payment_information_identification: Optional[str] = None
    remittance_information: Optional[str] = None
    purpose: Optional[str] = None


class ModificationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    requested_execution_date: Optional[date] = None
    requested_settlement_amount: Optional[Decimal] = None
    requested_currency: Optional[str] = None
    debtor_name: Optional[str] = None
    debtor_account: Optional[str] = None
    creditor_name: Optional[str] = None
    creditor_account: Optional[str] = None
    remittance_information: Optional[str] = None
    purpose: Optional[str] = None


class NotificationItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    expected_value_date: Optional[date] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    debtor_name: Optional[str] = None
    debtor_account_iban: Optional[str] = None
    debtor_agent_bic: Optional[str] = None
    remittance_information: Optional[str] = None


class CancellationItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    original_item_id: str = ""
    cancellation_reason_code: Optional[str] = None
    cancellation_reason_proprietary: Optional[str] = None
    cancellation_additional_info: Optional[str] = None


class StatusItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    original_item_id: str = ""
    item_status: Optional[str] = None
    reason_code: Optional[str] = None
    reason_proprietary: Optional[str] = None
    additional_information: Optional[str] = None


# ---------------------------------------------------------------- documentos

class Camt026Document(CamtMessage, AssignmentBlock, UnderlyingBlock):
    """Unable to Apply."""

    unable_to_apply_reasons: Tuple[UnableToApplyReason, ...] = ()


class Camt027Document(CamtMessage, AssignmentBlock, UnderlyingBlock):
    """Claim Non Receipt."""

    missing_cover_indicator: Optional[bool] = None
    cover_date: Optional[date] = None


class Camt028Document(CamtMessage, AssignmentBlock, UnderlyingBlock):
    """Additional Payment Information."""

    additional_information: Tuple[AdditionalPaymentInformation, ...] = ()


class Camt029Document(CamtMessage, AssignmentBlock):
    """Resolution of Investigation."""

    investigation_status: Optional[str] = None
    investigation_status_proprietary: Optional[str] = None


class Camt030Document(CamtMessage, AssignmentBlock):
    """Notification of Case Assignment."""

    header_message_id: Optional[str] = None
    notification_justification: Optional[str] = None


class Camt031Document(CamtMessage, AssignmentBlock):
    """Reject Investigation."""

    rejection_reason_code: Optional[str] = None
    rejection_reason_proprietary: Optional[str] = None
    additional_information: Optional[str] = None


class Camt033Document(CamtMessage, AssignmentBlock, UnderlyingBlock):
    """Request for Duplicate."""


class Camt034Document(CamtMessage, AssignmentBlock):
    """Duplicate."""

    duplicate_content: Optional[str] = None
    duplicate_content_type: Optional[str] = None


class Camt035Document(CamtMessage, AssignmentBlock):
    """Proprietary Format Investigation."""

    proprietary_data: Optional[str] = None
    proprietary_type: Optional[str] = None


class Camt036Document(CamtMessage, AssignmentBlock):
    """Debit Authorisation Response."""

    debit_authorised: Optional[bool] = None
    authorised_amount: Optional[Decimal] = None
    authorised_currency: Optional[str] = None
    value_date: Optional[date] = None
    reason: Optional[str] = None


class Camt037Document(CamtMessage, AssignmentBlock, UnderlyingBlock):
    """Debit Authorisation Request."""

    debtor_name: Optional[str] = None
    debtor_account_iban: Optional[str] = None
    reason: Optional[str] = None


class Camt038Document(CamtMessage):
    """Case Status Report Request."""

    request_id: Optional[str] = None
    creation_date_time: Optional[datetime] = None
    case_id: Optional[str] = None
    case_creator: Optional[str] = None
    requester_agent_bic: Optional[str] = None
    requester_party_name: Optional[str] = None
    responder_agent_bic: Optional[str] = None
    responder_party_name: Optional[str] = None


class Camt039Document(CamtMessage):
    """Case Status Report."""

    report_id: Optional[str] = None
    creation_date_time: Optional[datetime] = None
    status_code: Optional[str] = None
    status_reason: Optional[str] = None
    case_id: Optional[str] = None
    case_creator: Optional[str] = None
    reporter_agent_bic: Optional[str] = None
    reporter_party_name: Optional[str] = None
    receiver_agent_bic: Optional[str] = None
    receiver_party_name: Optional[str] = None
    additional_information: Optional[str] = None


class _CancellationRequest(CamtMessage):
    message_id: Optional[str] = None
    creation_date_time: Optional[datetime] = None
    number_of_transactions: Optional[int] = None
    control_sum: Optional[Decimal] = None
    case_id: Optional[str] = None
    case_creator: Optional[str] = None


class Camt055Document(_CancellationRequest):
    """Customer Payment Cancellation Request."""

    initiating_party_name: Optional[str] = None
    initiating_party_id: Optional[str] = None


class Camt056Document(_CancellationRequest):
    """FI To FI Payment Cancellation Request."""

    instructing_agent_bic: Optional[str] = None
    instructed_agent_bic: Optional[str] = None


class _Notification(CamtMessage):
    group_header_message_id: Optional[str] = None
    creation_date_time: Optional[datetime] = None
    initiating_party_name: Optional[str] = None
    message_recipient_bic: Optional[str] = None


class Camt057Document(_Notification):
    """Notification to Receive."""

    items: Tuple[NotificationItem, ...] = ()


class Camt058Document(_Notification):
    """Notification to Receive Cancellation Advice."""

    original_message_id: Optional[str] = None
    original_message_name_id: Optional[str] = None
    original_creation_date_time: Optional[datetime] = None
    items: Tuple[CancellationItem, ...] = ()


class Camt059Document(_Notification):
    """Notification to Receive Status Report."""

    original_message_id: Optional[str] = None
    original_message_name_id: Optional[str] = None
    original_creation_date_time: Optional[datetime] = None
    original_group_status_code: Optional[str] = None
    items: Tuple[StatusItem, ...] = ()


class Camt087Document(CamtMessage, AssignmentBlock, UnderlyingBlock):
    """Request to Modify Payment."""

    modification_requests: Tuple[ModificationRequest, ...] = ()
