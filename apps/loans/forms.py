# loans/forms.py

"""
Input forms for the loan JSON endpoints.

Field names are English; the Spanish names sent by the existing frontend
(monto, nota, firmante, ...) are accepted as aliases.
"""

from django import forms
from django.core.exceptions import ValidationError
from django.utils.translation import gettext_lazy as _
from decimal import Decimal

from .choices import parse_signer

import logging

logger = logging.getLogger(__name__)


def validate_positive_amount(value):
    """Validate that amount is positive"""
    if value is not None and value <= 0:
        raise ValidationError('Amount must be greater than zero.')


# =============================================================================
# BASE FORM
# =============================================================================

class AliasedFieldsForm(forms.Form):
    """
    Form that also accepts alternative names for its fields.

    `field_aliases` maps an accepted input name to the field it fills. The
    canonical name wins when both are present.
    """

    field_aliases = {}

    def __init__(self, data=None, *args, **kwargs):
        if data is not None:
            data = dict(data.items())
            for alias, field_name in self.field_aliases.items():
                if alias in data and field_name not in data:
                    data[field_name] = data[alias]
        super().__init__(data, *args, **kwargs)


# =============================================================================
# ACCRUAL FORMS
# =============================================================================

class AccrualEstimateForm(AliasedFieldsForm):
    """Principal and term for an accrual estimate"""

    field_aliases = {
        'monto_prestamo': 'principal',
        'monto': 'principal',
        'fecha_inicio': 'start_date',
        'fecha_vencimiento': 'due_date',
    }

    principal = forms.DecimalField(
        label=_('Principal'),
        max_digits=12,
        decimal_places=2,
        min_value=Decimal('0.00')
    )

    start_date = forms.DateField(label=_('Start Date'))

    due_date = forms.DateField(label=_('Due Date'))

    def clean(self):
        cleaned_data = super().clean()
        start_date = cleaned_data.get('start_date')
        due_date = cleaned_data.get('due_date')

        if start_date and due_date and due_date <= start_date:
            raise ValidationError({'due_date': _('Due date must be after start date.')})

        return cleaned_data


class LoanCreateForm(AccrualEstimateForm):
    """Create a loan for an approved article evaluation"""

    field_aliases = {
        **AccrualEstimateForm.field_aliases,
        'id_cliente': 'client_id',
        'id_articulo': 'article_reference',
    }

    client_id = forms.CharField(label=_('Client'), max_length=50)

    article_reference = forms.CharField(
        label=_('Article'),
        max_length=50,
        required=False
    )

    def clean_principal(self):
        principal = self.cleaned_data['principal']
        validate_positive_amount(principal)
        return principal


class LoanClosureForm(AliasedFieldsForm):
    """Administrative closure of a loan"""

    field_aliases = {'motivo': 'reason'}

    reason = forms.CharField(
        label=_('Closure Reason'),
        max_length=1000
    )


# =============================================================================
# CONTRACT FORMS
# =============================================================================

class ContractSignatureForm(AliasedFieldsForm):
    """Client or company signature on a contract"""

    field_aliases = {
        'firmante': 'signer',
        'firma_digital': 'signature',
    }

    signer = forms.CharField(label=_('Signer'))

    signature = forms.CharField(
        label=_('Signature'),
        help_text=_('Signature image or blob, stored as received')
    )

    ip = forms.GenericIPAddressField(
        label=_('Signer IP'),
        required=False
    )

    def clean_signer(self):
        try:
            return parse_signer(self.cleaned_data['signer'])
        except ValueError:
            raise ValidationError(_("Signer must be 'cliente' or 'empresa'."))


# =============================================================================
# PAYMENT FORMS
# =============================================================================

class PaymentCreateForm(AliasedFieldsForm):
    """Register a payment against a loan"""

    field_aliases = {
        'monto': 'amount',
        'medio_pago': 'channel',
        'tipo_pago': 'channel',
        'ref_bancaria': 'reference',
        'comprobante': 'proof_uri',
    }

    amount = forms.DecimalField(
        label=_('Payment Amount'),
        max_digits=12,
        decimal_places=2,
        validators=[validate_positive_amount]
    )

    channel = forms.CharField(
        label=_('Payment Channel'),
        max_length=30,
        help_text=_('cash, transfer, card, ...')
    )

    reference = forms.CharField(
        label=_('Bank Reference'),
        max_length=100,
        required=False
    )

    proof_uri = forms.CharField(
        label=_('Proof of Payment'),
        max_length=500,
        required=False
    )


class PaymentValidationForm(AliasedFieldsForm):
    field_aliases = {'nota': 'note'}

    note = forms.CharField(
        label=_('Note'),
        max_length=1000,
        required=False
    )


class PaymentRejectionForm(AliasedFieldsForm):
    field_aliases = {'motivo': 'reason'}

    reason = forms.CharField(
        label=_('Rejection Reason'),
        max_length=1000
    )
