from .db import db
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .service import Service
from .slot import Slot
from .hold import Hold
from .booking import Booking
from .draft import BookingDraft
from .payment import Payment
from .booking_event import BookingEvent
from .testimonial import Testimonial
from .blog_post import BlogPost
from .user_message import UserMessage
from .resource import Resource
