# path: backend/jobmatch/db/base.py
# Purpose: declarative base shared by every ORM model. Single source of DB truth.
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
