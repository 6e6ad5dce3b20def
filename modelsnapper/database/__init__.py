from .models import (
    Base, User, UserEmail, BusinessProfile, ModelProfile, ConsentRequest, CreditTransaction,
    PaymentHistory, Avatar, Render, Feedback, Lead, utcnow
)
from .connection import init_database, close_database, create_tables, get_db, get_session
