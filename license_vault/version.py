"""License Vault Meta information.
   License Vault keeps API keys, license keys, tokens and certificates
   inside a single password-encrypted file.
"""
__title__ = 'license_vault'
__description__ = (
   'License Vault keeps credential records '
   'inside a single password-encrypted file.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2023 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/phenobarbital/license-vault'
