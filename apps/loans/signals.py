# loans/signals.py

"""
Loans Signals

Handles automatic operations on model save:
- Payment channel normalization
- Loan status initialization
- Creation logging for loans, contracts and payments

State transitions themselves are conditional updates issued by services.py
and do not pass through these handlers.
"""

from django.db.models.signals import pre_save, post_save
from django.dispatch import receiver
import logging

from .choices import LoanStatus
from .models import Loan, Contract, LoanPayment

logger = logging.getLogger(__name__)


# =============================================================================
# LOAN SIGNALS
# =============================================================================

@receiver(pre_save, sender=Loan)
def initialize_loan_status(sender, instance, **kwargs):
    """New loans always start awaiting signatures"""
    if instance._state.adding and not instance.status:
        instance.status = LoanStatus.AWAITING_SIGNATURES


@receiver(post_save, sender=Loan)
def log_loan_created(sender, instance, created, **kwargs):
    if created:
        logger.info(
            f"Loan {instance.pk} created for client {instance.client_id} "
            f"({instance.start_date} -> {instance.due_date})"
        )


# =============================================================================
# CONTRACT SIGNALS
# =============================================================================

@receiver(post_save, sender=Contract)
def log_contract_created(sender, instance, created, **kwargs):
    if created:
        logger.info(f"Contract {instance.pk} generated for loan {instance.loan_id} (hash {instance.content_hash[:12]})")


# =============================================================================
# PAYMENT SIGNALS
# =============================================================================

@receiver(pre_save, sender=LoanPayment)
def normalize_payment_channel(sender, instance, **kwargs):
    """
    Channels are an open set; store them trimmed and lower-case so
    'Transfer' and 'transfer ' count as the same channel.
    """
    if instance.channel:
        instance.channel = instance.channel.strip().lower()


@receiver(post_save, sender=LoanPayment)
def log_payment_created(sender, instance, created, **kwargs):
    if created:
        logger.info(
            f"Payment {instance.pk} of {instance.amount} registered for loan "
            f"{instance.loan_id} via {instance.channel}"
        )
