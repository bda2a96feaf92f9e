"""
Authentication service route handlers.

Provides routes for:
- User registration (issues the per-user data key)
- User login
- Profile retrieval and update (/me)
- Password change
- Admin user listing, role assignment, password reset and account deletion

All JWT logic is delegated to `auth_service.utils`.
"""

import logging
from typing import Tuple, Dict, Any
from uuid import UUID

import psycopg2.errors
from argon2 import PasswordHasher
from argon2.exceptions import HashingError, InvalidHashError, VerificationError
from flask import Blueprint, request, jsonify, Response

from teamcal.activity_service.activity import log_activity
from teamcal.auth_service.utils import create_token, verify_token_from_request
from teamcal.database.store import open_store
from teamcal.errors import (
    CalendarError,
    ConflictError,
    ForbiddenError,
    KeyUnavailableError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from teamcal.security.keys import KeyVault, current_key_vault
from teamcal.validation import json_body, require_uuid

auth_bp = Blueprint("auth", __name__)
ph = PasswordHasher()

ROLES = ("user", "admin")
PASSWORD_MIN_LENGTH = 8


# --- REQUEST LOGGING ---
@auth_bp.before_request
def before_request() -> None:
    """
    Log the method and path of every request to the authentication service.
    Headers are left out so bearer tokens never reach the log.
    """
    logging.info(f"[Auth] Incoming {request.method} {request.path}")


@auth_bp.after_request
def after_request(response: Response) -> Response:
    logging.info(f"[Auth] Response {response.status}")
    return response


def _require_admin(store, user_id: str) -> None:
    caller = store.get_user(user_id)
    if not caller or caller.get("role") != "admin":
        raise ForbiddenError("Admin access required")


def _public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in user.items() if k not in ("encrypted_private_key", "password_hash")}


def _hash_new_password(password: Any) -> str:
    if not isinstance(password, str) or len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    try:
        return ph.hash(password)
    except HashingError as e:
        logging.error("[Auth] Password hashing failed", exc_info=e)
        raise CalendarError("Password hashing failed") from e


# --- REGISTER ---
@auth_bp.route("/register", methods=["POST"])
def register() -> Tuple[Response, int]:
    """
    Register a new user in the system.

    Expects a JSON body with:
    - email (str): Unique email address.
    - password (str): Minimum 8 characters.
    - name (str)

    A fresh data key is generated for the account and stored enveloped under
    the system master key.

    Returns:
        201: JSON with user_id, role, and a new JWT token.
        400: Missing fields or invalid input.
        409: Email already exists, or no master key is configured.
    """
    data: Dict[str, Any] = json_body()
    email: str = (data.get("email") or "").strip().lower()
    password: str = data.get("password") or ""
    name: str = (data.get("name") or "").strip()

    # Validate input
    if not email or not password:
        raise ValidationError("Email and password required")
    if not name:
        raise ValidationError("Name required")
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")

    vault = current_key_vault()
    if vault is None:
        raise KeyUnavailableError("Registration is disabled: no master key is configured")

    try:
        pw_hash = ph.hash(password)
    except HashingError:
        logging.exception("[Auth] Password hashing failed")
        return jsonify({"error": "Password hashing failed"}), 500

    envelope = vault.envelope(KeyVault.generate_user_key())

    try:
        with open_store() as store:
            user = store.create_user(email, pw_hash, name, envelope)
            log_activity(store, user["id"], "register", "user", user["id"])
    except psycopg2.errors.UniqueViolation:
        raise ConflictError("Email already exists")

    # Generate initial token for immediate login
    token = create_token(user["id"], user["role"])

    return jsonify({"user_id": user["id"], "role": user["role"], "token": token}), 201


# --- LOGIN ---
@auth_bp.route("/login", methods=["POST"])
def login() -> Tuple[Response, int]:
    """
    Authenticate a user and return a JWT.

    Expects a JSON body with:
    - email (str)
    - password (str)

    Returns:
        200: JSON with user_id, role, name and JWT token.
        400: Missing credentials.
        401: Invalid credentials (wrong password or email).
    """
    data: Dict[str, Any] = json_body()
    email: str = (data.get("email") or "").strip().lower()
    password: str = data.get("password") or ""

    if not email or not password:
        raise ValidationError("Email and password required")

    with open_store() as store:
        user = store.get_user_credentials(email)

    if not user:
        return jsonify({"error": "Invalid credentials"}), 401

    # Verify password against hash
    try:
        ph.verify(user["password_hash"], password)
    except (VerificationError, InvalidHashError):
        return jsonify({"error": "Invalid credentials"}), 401

    token = create_token(user["id"], user["role"])

    return jsonify({
        "user_id": user["id"],
        "role": user["role"],
        "name": user["name"],
        "token": token
    }), 200


# --- GET CURRENT USER ---
@auth_bp.route("/me", methods=["GET"])
def get_current_user() -> Tuple[Response, int]:
    """
    Retrieve the current user's profile.

    Requires Authorization header: Bearer <token>

    Returns:
        200: User profile object.
        401: Authentication failure.
        404: User no longer exists.
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    with open_store() as store:
        user = store.get_user(user_id)

    if not user:
        raise NotFoundError("User", user_id)

    return jsonify(_public_user(user)), 200


# --- UPDATE PROFILE ---
@auth_bp.route("/me", methods=["PUT"])
def update_profile() -> Tuple[Response, int]:
    """
    Change the caller's name and/or email. A new email starts out unverified.

    Returns:
        200: Updated profile.
        400: Nothing to update, or an empty value.
        409: Email already in use.
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    data: Dict[str, Any] = json_body()
    if "name" not in data and "email" not in data:
        raise ValidationError("No update data provided")

    with open_store() as store:
        user = store.get_user(user_id)
        if not user:
            raise NotFoundError("User", user_id)

        name = data.get("name", user["name"])
        email = data.get("email", user["email"])
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Name required")
        if not isinstance(email, str) or "@" not in email:
            raise ValidationError("A valid email is required")

        try:
            updated = store.update_user_profile(user_id, name.strip(), email.strip().lower())
        except psycopg2.errors.UniqueViolation:
            raise ConflictError("Email already in use")
        log_activity(store, user_id, "update_profile", "user", user_id,
                     {"name": updated["name"], "email": updated["email"]})

    return jsonify(_public_user(updated)), 200


# --- CHANGE PASSWORD ---
@auth_bp.route("/change-password", methods=["POST"])
def change_password() -> Tuple[Response, int]:
    """
    Expects JSON:
        { "current_password": str, "new_password": str (min 8 characters) }

    Returns:
        200: Password changed.
        400: Missing or too short.
        401: Current password is wrong.
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    data: Dict[str, Any] = json_body()
    current = data.get("current_password") or ""
    if not isinstance(current, str) or not current:
        raise ValidationError("Current password required")
    new_hash = _hash_new_password(data.get("new_password"))

    with open_store() as store:
        pw_hash = store.get_password_hash(user_id)
        if pw_hash is None:
            raise NotFoundError("User", user_id)
        try:
            ph.verify(pw_hash, current)
        except (VerificationError, InvalidHashError):
            raise UnauthorizedError("Incorrect current password")

        store.set_user_password(user_id, new_hash)
        log_activity(store, user_id, "change_password", "user", user_id)

    return jsonify({"status": "ok"}), 200


# --- LIST USERS (ADMIN ONLY) ---
@auth_bp.route("/users", methods=["GET"])
def list_users() -> Tuple[Response, int]:
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    with open_store() as store:
        _require_admin(store, user_id)
        users = store.list_users()

    return jsonify(users), 200


# --- SET ROLE (ADMIN ONLY) ---
@auth_bp.route("/set-role", methods=["POST"])
def set_role() -> Tuple[Response, int]:
    """
    Admin-only endpoint to promote or demote a user's role.
    The caller's role is read from the database, not from the token.

    Expects JSON:
        { "user_id": str, "role": "user" | "admin" }

    Returns:
        200: Success status.
        400: Invalid role or user_id.
        403: Caller is not an admin.
        404: No such user.
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    data: Dict[str, Any] = json_body()
    target_id = require_uuid(data.get("user_id"), "user_id")
    new_role = data.get("role")
    if new_role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}")

    with open_store() as store:
        _require_admin(store, user_id)
        if not store.set_user_role(target_id, new_role):
            raise NotFoundError("User", target_id)
        log_activity(store, user_id, "set_role", "user", target_id, {"role": new_role})

    return jsonify({"status": "ok"}), 200


# --- RESET PASSWORD (ADMIN ONLY) ---
@auth_bp.route("/users/<uuid:target_id>/password", methods=["POST"])
def reset_password(target_id: UUID) -> Tuple[Response, int]:
    """
    Set another user's password. Expects JSON: { "password": str (min 8 characters) }
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    new_hash = _hash_new_password(json_body().get("password"))
    target = str(target_id)

    with open_store() as store:
        _require_admin(store, user_id)
        if not store.set_user_password(target, new_hash):
            raise NotFoundError("User", target)
        log_activity(store, user_id, "reset_password", "user", target)

    return jsonify({"status": "ok"}), 200


# --- DELETE USER (ADMIN ONLY) ---
@auth_bp.route("/users/<uuid:target_id>", methods=["DELETE"])
def delete_user(target_id: UUID) -> Tuple[Response, int]:
    """
    Delete an account and, through cascades, everything it owns. Rows it only
    authored (grants, group admin assignments, teams) keep existing with no author.
    Admins cannot delete themselves.
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    target = str(target_id)
    if target == user_id:
        raise ValidationError("Cannot delete your own account")

    with open_store() as store:
        _require_admin(store, user_id)
        if not store.delete_user(target):
            raise NotFoundError("User", target)
        log_activity(store, user_id, "delete_user", "user", target)

    return jsonify({"status": "deleted"}), 200
