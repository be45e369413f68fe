from enum import Enum


class AppRole(str, Enum):
    ADMIN = "admin"
    MODERATOR = "moderator"
    USER = "user"
    BUSINESS = "business"
    RIDER = "rider"
    CUSTOMER = "customer"
