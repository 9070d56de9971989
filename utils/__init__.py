# Make utils directory a Python package
import logging

from werkzeug.security import generate_password_hash

ROLES = ('admin', 'staff', 'customer')


def create_user(session, username, password, role, full_name=None, phone=None):
    """
    Creates a new user in the database.

    Args:
        session: SQLAlchemy session
        username: User's username
        password: Plain text password; stored hashed
        role: 'admin', 'staff' or 'customer'

    Returns:
        Tuple (success, message)
    """
    # Import here to avoid circular imports
    from models import User

    if role not in ROLES:
        return False, f"Role must be one of {', '.join(ROLES)}"

    if session.query(User).filter_by(username=username).first():
        return False, f"User '{username}' already exists"

    try:
        session.add(User(
            username=username,
            password=generate_password_hash(password),
            role=role,
            full_name=full_name,
            phone=phone,
        ))
        session.commit()
        return True, f"User '{username}' created successfully"
    except Exception as e:
        logging.error(f"Error creating user: {str(e)}")
        session.rollback()
        return False, f"Error creating user: {str(e)}"
