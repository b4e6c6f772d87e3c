"""
Persistence for users and posts.

Two backends share one interface:

* ``JsonStore`` keeps everything in a single JSON document on disk.
* ``MongoStore`` keeps ``users`` and ``posts`` collections in MongoDB.

``open_store`` picks one from a connection string.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from bson import ObjectId
from pymongo import DESCENDING, MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

DATE_FMT = "%Y-%m-%dT%H:%M:%S.%f"
POST_FIELDS = ("title", "subtitle", "content", "content_markdown", "author", "slug", "image")
EDITABLE_FIELDS = ("title", "subtitle", "content", "content_markdown")
MAX_SKIP = 2**63 - 1


class StoreError(Exception):
    """The backing store could not complete a read or write."""


class DuplicateEmailError(StoreError):
    """A user with this email already exists."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_date(date_str: Optional[str]) -> datetime:
    if not date_str:
        return datetime.min
    for fmt in (DATE_FMT, "%Y-%m-%dT%H:%M:%S"):
        try:
            return datetime.strptime(date_str, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(date_str)
    except ValueError:
        return datetime.min


class JsonStore:
    """Users and posts in one JSON file: ``{"users": [...], "posts": [...]}``."""

    def __init__(self, path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    # -- file handling -------------------------------------------------

    def _ensure_file(self) -> None:
        if not self.path.exists():
            self._save({"users": [], "posts": []})

    def _load(self) -> Dict:
        try:
            self._ensure_file()
            with open(self.path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, ValueError) as exc:
            raise StoreError(f"Could not read {self.path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise StoreError(f"Unexpected data layout in {self.path}")
        raw.setdefault("users", [])
        raw.setdefault("posts", [])
        return raw

    def _save(self, data: Dict) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            raise StoreError(f"Could not write {self.path}: {exc}") from exc

    @staticmethod
    def _to_post(record: Dict) -> Dict:
        post = {field: record.get(field, "") for field in POST_FIELDS}
        post["id"] = str(record.get("id"))
        post["created_at"] = parse_date(record.get("created_at"))
        return post

    @staticmethod
    def _next_id(posts: List[Dict]) -> int:
        ids = [int(p.get("id", 0)) for p in posts]
        return max(ids) + 1 if ids else 1

    def _sorted_posts(self, author: Optional[str] = None) -> List[Dict]:
        posts = self._load()["posts"]
        if author is not None:
            posts = [p for p in posts if p.get("author") == author]
        return sorted(posts, key=lambda p: parse_date(p.get("created_at")), reverse=True)

    # -- users ---------------------------------------------------------

    def find_user_by_email(self, email: str) -> Optional[Dict]:
        for user in self._load()["users"]:
            if user.get("email") == email:
                return dict(user)
        return None

    def create_user(self, name: str, email: str, password: str) -> Dict:
        with self._lock:
            data = self._load()
            if any(u.get("email") == email for u in data["users"]):
                raise DuplicateEmailError(f"A user with email {email} already exists")
            user = {"name": name, "email": email, "password": password}
            data["users"].append(user)
            self._save(data)
        return dict(user)

    # -- posts ---------------------------------------------------------

    def find_post_by_id(self, post_id: str) -> Optional[Dict]:
        for post in self._load()["posts"]:
            if str(post.get("id")) == str(post_id):
                return self._to_post(post)
        return None

    def find_post_by_slug(self, slug: str) -> Optional[Dict]:
        for post in self._sorted_posts():
            if post.get("slug") == slug:
                return self._to_post(post)
        return None

    def find_posts(self, author: Optional[str] = None, skip: int = 0, limit: int = 10) -> List[Dict]:
        posts = self._sorted_posts(author)
        return [self._to_post(p) for p in posts[skip : skip + limit]]

    def count_posts(self, author: Optional[str] = None) -> int:
        return len(self._sorted_posts(author))

    def create_post(self, fields: Dict, created_at: Optional[datetime] = None) -> Dict:
        with self._lock:
            data = self._load()
            record = {field: fields.get(field, "") for field in POST_FIELDS}
            record["id"] = self._next_id(data["posts"])
            record["created_at"] = (created_at or utcnow()).strftime(DATE_FMT)
            data["posts"].append(record)
            self._save(data)
        return self._to_post(record)

    def update_post(self, post_id: str, fields: Dict) -> Optional[Dict]:
        with self._lock:
            data = self._load()
            for record in data["posts"]:
                if str(record.get("id")) == str(post_id):
                    for field in EDITABLE_FIELDS:
                        if field in fields:
                            record[field] = fields[field]
                    self._save(data)
                    return self._to_post(record)
        return None

    def delete_post(self, post_id: str) -> Optional[Dict]:
        with self._lock:
            data = self._load()
            for idx, record in enumerate(data["posts"]):
                if str(record.get("id")) == str(post_id):
                    del data["posts"][idx]
                    self._save(data)
                    return self._to_post(record)
        return None

    def close(self) -> None:
        pass


class MongoStore:
    def __init__(self, client: MongoClient, db_name: Optional[str] = None) -> None:
        self.client = client
        if db_name:
            self.db = client[db_name]
        else:
            self.db = client.get_default_database(default="devblog")
        try:
            self.db.users.create_index("email", unique=True)
            self.db.posts.create_index([("created_at", DESCENDING)])
            self.db.posts.create_index("slug")
        except PyMongoError as exc:
            raise StoreError(f"Could not prepare collections: {exc}") from exc

    @staticmethod
    def _object_id(post_id: str) -> Optional[ObjectId]:
        if not ObjectId.is_valid(post_id):
            return None
        return ObjectId(post_id)

    @staticmethod
    def _to_post(doc: Optional[Dict]) -> Optional[Dict]:
        if doc is None:
            return None
        post = {field: doc.get(field, "") for field in POST_FIELDS}
        post["id"] = str(doc["_id"])
        post["created_at"] = doc.get("created_at") or datetime.min
        return post

    @staticmethod
    def _author_filter(author: Optional[str]) -> Dict:
        return {} if author is None else {"author": author}

    def find_user_by_email(self, email: str) -> Optional[Dict]:
        try:
            doc = self.db.users.find_one({"email": email}, {"_id": 0})
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        return doc

    def create_user(self, name: str, email: str, password: str) -> Dict:
        if self.find_user_by_email(email) is not None:
            raise DuplicateEmailError(f"A user with email {email} already exists")
        user = {"name": name, "email": email, "password": password}
        try:
            self.db.users.insert_one(dict(user))
        except DuplicateKeyError as exc:
            raise DuplicateEmailError(f"A user with email {email} already exists") from exc
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        return user

    def find_post_by_id(self, post_id: str) -> Optional[Dict]:
        oid = self._object_id(post_id)
        if oid is None:
            return None
        try:
            return self._to_post(self.db.posts.find_one({"_id": oid}))
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

    def find_post_by_slug(self, slug: str) -> Optional[Dict]:
        try:
            return self._to_post(self.db.posts.find_one({"slug": slug}))
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

    def find_posts(self, author: Optional[str] = None, skip: int = 0, limit: int = 10) -> List[Dict]:
        # skip is encoded as int64
        if skip > MAX_SKIP:
            return []
        try:
            cursor = (
                self.db.posts.find(self._author_filter(author))
                .sort("created_at", DESCENDING)
                .skip(skip)
                .limit(limit)
            )
            return [self._to_post(doc) for doc in cursor]
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

    def count_posts(self, author: Optional[str] = None) -> int:
        try:
            return self.db.posts.count_documents(self._author_filter(author))
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

    def create_post(self, fields: Dict, created_at: Optional[datetime] = None) -> Dict:
        doc = {field: fields.get(field, "") for field in POST_FIELDS}
        doc["created_at"] = created_at or utcnow()
        try:
            result = self.db.posts.insert_one(doc)
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        doc["_id"] = result.inserted_id
        return self._to_post(doc)

    def update_post(self, post_id: str, fields: Dict) -> Optional[Dict]:
        oid = self._object_id(post_id)
        if oid is None:
            return None
        changes = {field: fields[field] for field in EDITABLE_FIELDS if field in fields}
        try:
            if changes:
                self.db.posts.update_one({"_id": oid}, {"$set": changes})
            return self._to_post(self.db.posts.find_one({"_id": oid}))
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

    def delete_post(self, post_id: str) -> Optional[Dict]:
        oid = self._object_id(post_id)
        if oid is None:
            return None
        try:
            return self._to_post(self.db.posts.find_one_and_delete({"_id": oid}))
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

    def close(self) -> None:
        self.client.close()


def open_store(uri: str):
    if uri.startswith(("mongodb://", "mongodb+srv://")):
        return MongoStore(MongoClient(uri))
    return JsonStore(uri)
