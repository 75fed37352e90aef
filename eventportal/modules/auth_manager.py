"""
Authentication Manager Module - Event Attendance Portal

This module handles user accounts and bearer-token authentication for the
portal. Staff and admins log in with email and password and receive a signed
token carrying their identity and role; every protected request is verified
against that token.

Features:
- User authentication with salted password hashes
- Signed bearer tokens (HS256) with expiry
- Role-based access control (admin / user)
- User account management and password changes
"""

from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Any, Optional
import logging
import re
import sqlite3

import jwt

from eventportal.modules.database_manager import generate_id, timestamp_now


class AuthManager:
    """
    User accounts and bearer-token handling.
    """

    def __init__(self, database_manager, secret_key: str, algorithm: str = 'HS256',
                 token_lifetime: timedelta = timedelta(hours=24), password_min_length: int = 6):
        """
        Initialize the authentication manager with database connection.

        Args:
            database_manager: Database manager instance
            secret_key (str): Token signing key
            algorithm (str): Token signing algorithm
            token_lifetime (timedelta): Validity of issued tokens
            password_min_length (int): Minimum password length
        """
        if not secret_key:
            raise ValueError("A token signing key is required")

        self.db = database_manager
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.token_lifetime = token_lifetime
        self.logger = logging.getLogger(__name__)

        self.ROLES = ('admin', 'user')
        self.FULL_NAME_MIN_LENGTH = 2
        self.PASSWORD_MIN_LENGTH = password_min_length

    @staticmethod
    def sanitize_user(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Strip the password hash from a user row."""
        if user is None:
            return None
        return {key: value for key, value in user.items() if key != 'password_hash'}

    def authenticate_user(self, email: str, password: str) -> Optional[Dict[str, Any]]:
        """
        Authenticate user with email and password.

        Args:
            email (str): Email address
            password (str): Password

        Returns:
            Dict[str, Any]: User information if authenticated, None otherwise

        Raises:
            sqlite3.Error: When the user lookup itself fails
        """
        if not isinstance(email, str) or not isinstance(password, str) or not email or not password:
            return None

        user = self.db.execute_query(
            "SELECT * FROM users WHERE email = ?",
            (email.strip(),),
            fetch_all=False
        )

        if not user:
            self.logger.warning(f"Authentication failed - user not found: {email}")
            return None

        if not check_password_hash(user['password_hash'], password):
            self.logger.warning(f"Authentication failed - invalid password: {email}")
            return None

        self.logger.info(f"User authenticated successfully: {email}")
        return self.sanitize_user(user)

    def generate_token(self, user: Dict[str, Any]) -> str:
        """
        Issue a signed bearer token for a user.

        Args:
            user (dict): User with id, email, full_name and role

        Returns:
            str: Encoded token
        """
        now = datetime.now(timezone.utc)
        payload = {
            'sub': user['id'],
            'email': user['email'],
            'full_name': user['full_name'],
            'role': user['role'],
            'iat': now,
            'exp': now + self.token_lifetime
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Decode a bearer token, None when it is malformed, forged or expired."""
        if not token:
            return None
        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            self.logger.info("Rejected expired token")
            return None
        except jwt.PyJWTError as e:
            self.logger.warning(f"Rejected invalid token: {str(e)}")
            return None

    def verify_user_token(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Rebuild the authenticated user from a token's claims.
        Tokens are not revoked: a deleted user's token stays valid until it expires.
        """
        claims = self.verify_token(token)
        if not claims or not claims.get('sub') or claims.get('role') not in self.ROLES:
            return None

        return {
            'id': claims['sub'],
            'email': claims.get('email'),
            'full_name': claims.get('full_name'),
            'role': claims['role']
        }

    def _validate_user_data(self, user_data: Dict[str, Any], require_password: bool = True) -> Dict[str, Any]:
        errors = {}

        for key in ('full_name', 'email', 'password', 'role'):
            value = user_data.get(key)
            if value is not None and not isinstance(value, str):
                errors[key] = f"{key.replace('_', ' ').capitalize()} must be text."
        if errors:
            return {'valid': False, 'errors': errors}

        if len((user_data.get('full_name') or '').strip()) < self.FULL_NAME_MIN_LENGTH:
            errors['full_name'] = f'Full name must be at least {self.FULL_NAME_MIN_LENGTH} characters.'

        email = (user_data.get('email') or '').strip()
        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not re.match(email_pattern, email):
            errors['email'] = 'Please enter a valid email address.'

        password = user_data.get('password')
        if require_password or password:
            password_validation = self._validate_password(password or '')
            if not password_validation['valid']:
                errors['password'] = password_validation['error']

        if user_data.get('role', 'user') not in self.ROLES:
            errors['role'] = f"Role must be one of: {', '.join(self.ROLES)}"

        return {'valid': not errors, 'errors': errors}

    def _validate_password(self, password: str) -> Dict[str, Any]:
        if not isinstance(password, str) or len(password) < self.PASSWORD_MIN_LENGTH:
            return {
                'valid': False,
                'error': f'Password must be at least {self.PASSWORD_MIN_LENGTH} characters.'
            }
        return {'valid': True}

    def _validation_failure(self, validation):
        return {
            'success': False,
            'error': next(iter(validation['errors'].values())),
            'error_type': 'validation_error',
            'errors': validation['errors']
        }

    def create_user(self, user_data: Dict[str, Any], created_by: str = None) -> Dict[str, Any]:
        """
        Create a new user account.

        Args:
            user_data (Dict[str, Any]): full_name, email, password, role
            created_by (str): ID of the admin creating this account

        Returns:
            Dict[str, Any]: Creation result with the sanitized user
        """
        validation = self._validate_user_data(user_data)
        if not validation['valid']:
            return self._validation_failure(validation)

        email = user_data['email'].strip()
        duplicate = {
            'success': False,
            'error': 'A user with this email already exists',
            'error_type': 'duplicate_email'
        }

        try:
            if self.db.execute_query("SELECT id FROM users WHERE email = ?", (email,), fetch_all=False):
                return duplicate

            user_id = generate_id()
            now = timestamp_now()
            self.db.execute_update(
                """INSERT INTO users (id, full_name, email, password_hash, role, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (user_id, user_data['full_name'].strip(), email,
                 generate_password_hash(user_data['password']),
                 user_data.get('role', 'user'), now, now)
            )

            self.logger.info(f"User created: {email} (ID: {user_id}) by {created_by}")
            return {
                'success': True,
                'user': self.get_user_by_id(user_id),
                'message': 'User created successfully'
            }

        except sqlite3.IntegrityError:
            return duplicate
        except Exception as e:
            self.logger.error(f"User creation failed for {email}: {str(e)}")
            return {'success': False, 'error': 'Failed to create user', 'error_type': 'system_error'}

    def update_user(self, user_id: str, user_data: Dict[str, Any], updated_by: str = None) -> Dict[str, Any]:
        """
        Update a user account. The password is only changed when supplied.

        Args:
            user_id (str): User ID
            user_data (Dict[str, Any]): full_name, email, role and optional password
            updated_by (str): ID of the admin making the change

        Returns:
            Dict[str, Any]: Update result with the sanitized user
        """
        validation = self._validate_user_data(user_data, require_password=False)
        if not validation['valid']:
            return self._validation_failure(validation)

        email = user_data['email'].strip()
        duplicate = {
            'success': False,
            'error': 'A user with this email already exists',
            'error_type': 'duplicate_email'
        }

        try:
            if not self.get_user_by_id(user_id):
                return {'success': False, 'error': 'User not found', 'error_type': 'user_not_found'}

            clash = self.db.execute_query(
                "SELECT id FROM users WHERE email = ? AND id != ?",
                (email, user_id),
                fetch_all=False
            )
            if clash:
                return duplicate

            update_fields = ['full_name = ?', 'email = ?', 'role = ?', 'updated_at = ?']
            update_values = [user_data['full_name'].strip(), email,
                             user_data.get('role', 'user'), timestamp_now()]
            if user_data.get('password'):
                update_fields.append('password_hash = ?')
                update_values.append(generate_password_hash(user_data['password']))
            update_values.append(user_id)

            self.db.execute_update(
                f"UPDATE users SET {', '.join(update_fields)} WHERE id = ?",
                tuple(update_values)
            )

            self.logger.info(f"User {user_id} updated by {updated_by}")
            return {
                'success': True,
                'user': self.get_user_by_id(user_id),
                'message': 'User updated successfully'
            }

        except sqlite3.IntegrityError:
            return duplicate
        except Exception as e:
            self.logger.error(f"User update failed for ID {user_id}: {str(e)}")
            return {'success': False, 'error': 'Failed to update user', 'error_type': 'system_error'}

    def delete_user(self, user_id: str, deleted_by: str = None) -> Dict[str, Any]:
        try:
            affected_rows = self.db.execute_update("DELETE FROM users WHERE id = ?", (user_id,))
        except Exception as e:
            self.logger.error(f"Failed to delete user {user_id}: {str(e)}")
            return {'success': False, 'error': 'Failed to delete user', 'error_type': 'system_error'}

        if affected_rows == 0:
            return {'success': False, 'error': 'User not found', 'error_type': 'user_not_found'}

        self.logger.info(f"User {user_id} deleted by {deleted_by}")
        return {'success': True, 'message': 'User deleted successfully'}

    def get_users(self) -> List[Dict[str, Any]]:
        return self.db.execute_query(
            """SELECT id, full_name, email, role, created_at, updated_at
               FROM users ORDER BY full_name"""
        )

    def get_user_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.db.execute_query(
            """SELECT id, full_name, email, role, created_at, updated_at
               FROM users WHERE id = ?""",
            (user_id,),
            fetch_all=False
        )

    def change_password(self, user_id: str, current_password: str, new_password: str) -> Dict[str, Any]:
        """
        Change a user's password after checking the current one.

        Args:
            user_id (str): User ID
            current_password (str): Current password
            new_password (str): New password

        Returns:
            Dict[str, Any]: Change result
        """
        password_validation = self._validate_password(new_password or '')
        if not password_validation['valid']:
            return {
                'success': False,
                'error': password_validation['error'],
                'error_type': 'validation_error',
                'errors': {'new_password': password_validation['error']}
            }

        try:
            user = self.db.execute_query(
                "SELECT id, password_hash FROM users WHERE id = ?",
                (user_id,),
                fetch_all=False
            )
            if not user:
                return {'success': False, 'error': 'User not found', 'error_type': 'user_not_found'}

            if not isinstance(current_password, str):
                current_password = ''
            if not check_password_hash(user['password_hash'], current_password):
                self.logger.warning(f"Password change rejected for user {user_id}: wrong current password")
                return {
                    'success': False,
                    'error': 'Current password is incorrect',
                    'error_type': 'validation_error',
                    'errors': {'current_password': 'Current password is incorrect'}
                }

            self.db.execute_update(
                "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
                (generate_password_hash(new_password), timestamp_now(), user_id)
            )

            self.logger.info(f"Password changed for user {user_id}")
            return {'success': True, 'message': 'Password changed successfully'}

        except Exception as e:
            self.logger.error(f"Password change failed for user {user_id}: {str(e)}")
            return {'success': False, 'error': 'Failed to change password', 'error_type': 'system_error'}
