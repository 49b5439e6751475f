"""Device Vault Meta information.
   Device Vault keeps application secrets encrypted at rest with a key
   bound to the host machine.
"""
__title__ = 'device_vault'
__description__ = (
   'Device Vault keeps application secrets encrypted at rest '
   'with a key bound to the host machine.'
)
__version__ = '0.1.0'
__copyright__ = 'Copyright (c) 2026 Device Vault contributors'
__author__ = 'Device Vault contributors'
__author_email__ = ''
__license__ = 'Apache-2.0'
__url__ = ''
