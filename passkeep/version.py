"""PassKeep Meta information.
   PassKeep is a zero-knowledge credential vault: secrets are encrypted
   client-side and the storage backend only ever sees ciphertext.
"""
__title__ = 'passkeep'
__description__ = (
   'Zero-knowledge credential vault: client-side key derivation '
   'and envelope encryption of stored secrets.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2025 PassKeep Developers'
__author__ = 'PassKeep Developers'
__author_email__ = 'dev@passkeep.app'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/passkeep/passkeep-vault'
