"""
Credential sources for the myehr CLI.

Credentials are looked up in this order:
    1. MYEHR_USERNAME / MYEHR_PASSWORD environment variables (or .env)
    2. 1Password CLI item named by MYEHR_ONEPASSWORD_ITEM (default "myehr")
    3. Interactive prompt
"""

from __future__ import annotations

import getpass
import os
import shutil
import subprocess

from dotenv import load_dotenv

load_dotenv()

# 1Password item name for credentials (can be overridden via .env or environment variable)
ONEPASSWORD_ITEM = os.environ.get('MYEHR_ONEPASSWORD_ITEM', 'myehr')


def get_credentials_from_env() -> tuple[str, str] | None:
    """Return (username, password) from the environment, or None if either is unset."""
    username = os.environ.get('MYEHR_USERNAME', '').strip()
    password = os.environ.get('MYEHR_PASSWORD', '')
    if username and password:
        return username, password
    return None


def is_1password_available() -> bool:
    """Check if the 1Password CLI (op) is installed and available."""
    return shutil.which('op') is not None


def _op_field(item_name: str, field: str, reveal: bool = False) -> str:
    command = ['op', 'item', 'get', item_name, '--fields', field]
    if reveal:
        command.append('--reveal')
    result = subprocess.run(command, capture_output=True, text=True, check=True)
    return result.stdout.strip()


def get_credentials_from_1password(item_name: str = ONEPASSWORD_ITEM) -> tuple[str, str]:
    """Retrieve (username, password) from 1Password using the op CLI."""
    try:
        username = _op_field(item_name, 'username')
        password = _op_field(item_name, 'password', reveal=True)
    except subprocess.CalledProcessError as e:
        raise RuntimeError(
            f'Failed to get credentials from 1Password: {e.stderr}\n'
            f'Make sure you are signed into 1Password CLI (run: op signin)'
        ) from e
    except FileNotFoundError as e:
        raise RuntimeError('1Password CLI (op) not found.') from e

    if not username or not password:
        raise RuntimeError(f'Empty credentials retrieved from 1Password item "{item_name}"')

    return username, password


def get_credentials_from_prompt() -> tuple[str, str]:
    """Prompt for myehr credentials; the password is read without echo."""
    print()
    print('Please enter your myehr credentials:')
    username = input('  ID (employee number): ').strip()
    password = getpass.getpass('  Password: ')

    if not username or not password:
        raise ValueError('ID and password are required')

    return username, password


def get_credentials(item_name: str = ONEPASSWORD_ITEM, verbose: bool = True) -> tuple[str, str]:
    """
    Get credentials from the first source that has them.

    A 1Password failure is not fatal; the prompt is used instead.
    """
    credentials = get_credentials_from_env()
    if credentials:
        if verbose:
            print('Using credentials from MYEHR_USERNAME / MYEHR_PASSWORD')
        return credentials

    if is_1password_available():
        if verbose:
            print(f'Getting credentials from 1Password ({item_name})...')
        try:
            return get_credentials_from_1password(item_name)
        except RuntimeError as e:
            if verbose:
                print(f'  Warning: {e}')
                print('  Falling back to manual credential entry...')

    return get_credentials_from_prompt()
