# loans/urls.py

"""
URL Configuration for Loans Module

JSON endpoints only (views.py). All loan, contract and payment URLs use
UUID primary keys.
"""

from django.urls import path
from . import views

app_name = 'loans'

urlpatterns = [
    # =============================================================================
    # ACCRUAL
    # =============================================================================
    path('accrual/estimate/', views.accrual_estimate, name='accrual_estimate'),
    path('<uuid:loan_id>/accrual/', views.loan_accrual, name='loan_accrual'),

    # =============================================================================
    # LOANS
    # =============================================================================
    path('create/', views.loan_create, name='loan_create'),
    path('<uuid:loan_id>/status/', views.loan_status, name='loan_status'),
    path('<uuid:loan_id>/close/', views.loan_close, name='loan_close'),

    # =============================================================================
    # PAYMENTS
    # =============================================================================
    path('<uuid:loan_id>/payments/', views.payment_create, name='payment_create'),
    path('payments/<uuid:payment_id>/validate/', views.payment_validate, name='payment_validate'),
    path('payments/<uuid:payment_id>/reject/', views.payment_reject, name='payment_reject'),

    # =============================================================================
    # CONTRACTS
    # =============================================================================
    path('contracts/<uuid:contract_id>/sign/', views.contract_sign, name='contract_sign'),
    path('contracts/<uuid:contract_id>/sign-crypto/', views.contract_sign_crypto, name='contract_sign_crypto'),

    # =============================================================================
    # STATISTICS
    # =============================================================================
    path('stats/', views.loan_stats, name='stats'),

    # =============================================================================
    # CSRF
    # =============================================================================
    path('csrf/', views.csrf_token, name='csrf_token'),
]
