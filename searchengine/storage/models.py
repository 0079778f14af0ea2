"""
ORM models of the crawl frontier and the keyword index.
"""

import re
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column, DateTime, ForeignKey, Integer, SmallInteger, String, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()

DOMAIN_MAX_LENGTH = 253
URL_MAX_LENGTH = 2048
TITLE_MAX_LENGTH = 96
DESCRIPTION_MAX_LENGTH = 160
KEYWORD_MAX_LENGTH = 64

_whitespace = re.compile(r'\s+')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DomainName(Base):
    """A host seen by the crawler; its priority steers frontier pops."""
    __tablename__ = 'domain_names'

    id = Column(Integer, primary_key=True, autoincrement=True)
    domain = Column(String(DOMAIN_MAX_LENGTH), nullable=False, unique=True)
    # Operator-editable, 0 = normal
    priority = Column(SmallInteger, nullable=False, default=0)

    url_records = relationship('UrlRecord', back_populates='domain')

    def __repr__(self):
        return f"<DomainName {self.domain!r} priority={self.priority}>"


class UrlRecord(Base):
    """A discovered URL waiting in the frontier."""
    __tablename__ = 'url_records'

    id = Column(Integer, primary_key=True, autoincrement=True)
    added_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    url = Column(String(URL_MAX_LENGTH), nullable=False, unique=True)
    domain_id = Column(Integer, ForeignKey('domain_names.id'), nullable=False, index=True)

    domain = relationship('DomainName', back_populates='url_records')

    def __repr__(self):
        return f"<UrlRecord {self.url!r}>"


class Webpage(Base):
    """An indexed page. Written once, never updated."""
    __tablename__ = 'webpages'

    id = Column(Integer, primary_key=True, autoincrement=True)
    guid = Column(String(36), nullable=False, unique=True, default=lambda: str(uuid.uuid4()))
    added_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    url = Column(String(URL_MAX_LENGTH), nullable=False, unique=True)
    domain_id = Column(Integer, ForeignKey('domain_names.id'), nullable=False, index=True)

    domain = relationship('DomainName')
    page_metadata = relationship(
        'Metadata', uselist=False, back_populates='webpage', cascade='all, delete-orphan'
    )

    def __repr__(self):
        return f"<Webpage {self.id} {self.url!r}>"


class Metadata(Base):
    """Title and description of a webpage, owned by it."""
    __tablename__ = 'metadata'

    id = Column(Integer, ForeignKey('webpages.id'), primary_key=True)
    title = Column(String(TITLE_MAX_LENGTH), nullable=True)
    description = Column(String(DESCRIPTION_MAX_LENGTH), nullable=True)

    webpage = relationship('Webpage', back_populates='page_metadata')

    @classmethod
    def create(cls, title: Optional[str], description: Optional[str]) -> 'Metadata':
        """Collapse whitespace, trim and truncate both fields; the text arrives already decoded."""
        return cls(
            title=clean_field(title, TITLE_MAX_LENGTH),
            description=clean_field(description, DESCRIPTION_MAX_LENGTH),
        )


class Keyword(Base):
    """A root keyword form; case-sensitive and unique."""
    __tablename__ = 'keywords'

    id = Column(Integer, primary_key=True, autoincrement=True)
    root_keyword_form = Column(String(KEYWORD_MAX_LENGTH), nullable=False, unique=True)

    webpage_records = relationship('KeywordWebpageRecord', back_populates='keyword')

    def __repr__(self):
        return f"<Keyword {self.root_keyword_form!r}>"


class KeywordWebpageRecord(Base):
    """Accumulated relevance score of one keyword on one webpage."""
    __tablename__ = 'keyword_webpage_records'
    __table_args__ = (
        UniqueConstraint('keyword_id', 'webpage_id', name='uq_keyword_webpage'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    webpage_id = Column(Integer, ForeignKey('webpages.id'), nullable=False, index=True)
    keyword_id = Column(Integer, ForeignKey('keywords.id'), nullable=False)
    score = Column(Integer, nullable=False, default=0)

    webpage = relationship('Webpage')
    keyword = relationship('Keyword', back_populates='webpage_records')


def clean_field(value: Optional[str], max_length: int) -> Optional[str]:
    if value is None:
        return None
    value = _whitespace.sub(' ', value).strip()
    return value[:max_length] or None
