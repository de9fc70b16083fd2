"""Escrow Vault Meta information.
   Escrow Vault keeps wallet keys sealed at rest under a custodial escrow key.
"""
__title__ = 'escrow_vault'
__description__ = (
   'Escrow Vault keeps encrypted wallet bundles at rest and decrypts '
   'them per session with a key exported from a custodial service.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2026 Escrow Vault Contributors'
__author__ = 'Escrow Vault Contributors'
__license__ = 'Apache-2.0'
