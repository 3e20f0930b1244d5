"""FileVault Meta information.
   FileVault encrypts and decrypts files stored on local or S3 disks.
"""
__title__ = 'filevault'
__description__ = (
   'FileVault encrypts and decrypts files stored on local '
   'or S3 disks with streaming AES-CBC.'
)
__version__ = '0.1.0'
__copyright__ = 'Copyright (c) 2026 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/phenobarbital/filevault'
