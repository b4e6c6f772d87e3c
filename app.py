from __future__ import annotations

import atexit
import hashlib
import hmac
import logging
import math
import os
import re
from datetime import datetime
from functools import wraps
from logging.handlers import RotatingFileHandler
from typing import Dict, NamedTuple, Optional

from flask import (
    Blueprint,
    Flask,
    abort,
    current_app,
    flash,
    g,
    redirect,
    render_template,
    request,
    send_from_directory,
    session,
    url_for,
)
from markdown import markdown
from slugify import slugify
from werkzeug.exceptions import HTTPException, InternalServerError

import config
from store import StoreError, open_store
from uploads import UploadError, UploadStore

INVALID_CREDENTIALS = "Invalid email or password"
SLUG_STRIP_RE = re.compile(r"[^A-Za-z0-9_\s-]")

blog = Blueprint("blog", __name__)
admin = Blueprint("admin", __name__, url_prefix="/admin")


def slugify_title(title: str) -> str:
    """Lowercase, drop everything but ASCII word chars, spaces and hyphens, hyphenate."""
    stripped = SLUG_STRIP_RE.sub("", (title or "").lower())
    return slugify(stripped, regex_pattern=r"[^\w-]+")


class Page(NamedTuple):
    number: int
    size: int
    skip: int
    total: int
    total_pages: int

    @property
    def has_prev(self) -> bool:
        return self.number > 1

    @property
    def has_next(self) -> bool:
        return self.number < self.total_pages


def parse_page(value: Optional[str]) -> int:
    try:
        page = int(value)
    except (TypeError, ValueError):
        return 1
    return page if page > 0 else 1


def paginate(page: int, total: int, size: int = 10) -> Page:
    return Page(
        number=page,
        size=size,
        skip=(page - 1) * size,
        total=total,
        total_pages=math.ceil(total / size),
    )


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def check_password(password: str, stored_hash: str) -> bool:
    return hmac.compare_digest(hash_password(password), stored_hash or "")


def render_markdown(md_text: str) -> str:
    return markdown(
        md_text or "",
        extensions=["fenced_code", "codehilite", "tables", "sane_lists"],
        output_format="html5",
    )


def build_excerpt(html: str, length: int = 220) -> str:
    text = re.sub(r"<[^>]+>", "", html or "").strip()
    if len(text) <= length:
        return text
    return f"{text[:length].rstrip()}…"


def format_date(value: Optional[datetime]) -> str:
    if not value or value == datetime.min:
        return ""
    return value.strftime("%b %d, %Y")


def get_store():
    return current_app.extensions["store"]


def get_uploads() -> UploadStore:
    return current_app.extensions["uploads"]


def is_safe_next(target: Optional[str]) -> bool:
    return bool(target) and target.startswith("/") and not target.startswith("//")


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        user = session.get("user")
        if not user:
            return redirect(url_for("admin.login", next=request.path))
        g.user = user
        return view(*args, **kwargs)

    return wrapped


def load_editable_post(post_id: str) -> Dict:
    post = get_store().find_post_by_id(post_id)
    if not post:
        abort(404, description="Post not found")
    if current_app.config["ENFORCE_POST_OWNERSHIP"] and post.get("author") != g.user:
        current_app.logger.warning("%s may not modify post %s owned by %s", g.user, post_id, post.get("author"))
        abort(403)
    return post


def read_post_form() -> Dict:
    md_body = request.form.get("content_markdown", "").strip()
    content = request.form.get("content", "")
    if md_body:
        content = render_markdown(md_body)
    return {
        "title": request.form.get("title", "").strip(),
        "subtitle": request.form.get("subtitle", "").strip(),
        "content": content,
        "content_markdown": md_body,
    }


def list_posts(author: Optional[str] = None):
    store = get_store()
    page = paginate(
        parse_page(request.args.get("page")),
        store.count_posts(author=author),
        current_app.config["PAGE_SIZE"],
    )
    if page.skip >= page.total:
        return [], page
    posts = store.find_posts(author=author, skip=page.skip, limit=page.size)
    return posts, page


@blog.route("/")
def index():
    posts, page = list_posts()
    return render_template("index.html", posts=posts, page=page)


@blog.route("/post/<slug>")
def post(slug: str):
    found = get_store().find_post_by_slug(slug)
    if not found:
        abort(404, description="Post not found")
    return render_template("post.html", post=found)


@blog.route("/images/<path:filename>")
def image(filename: str):
    return send_from_directory(current_app.config["UPLOAD_DIR"], filename)


@admin.route("/login", methods=["GET", "POST"])
def login():
    if request.method == "POST":
        email = request.form.get("email", "").strip()
        password = request.form.get("password", "")
        user = get_store().find_user_by_email(email)
        if not user or not check_password(password, user.get("password")):
            current_app.logger.info("Failed login for %s", email)
            return render_template("admin/login.html", error=INVALID_CREDENTIALS, email=email)
        session.clear()
        session["user"] = user["name"]
        session.permanent = True
        current_app.logger.info("%s logged in", user["name"])
        flash("Logged in", "success")
        target = request.args.get("next")
        return redirect(target if is_safe_next(target) else url_for("admin.dashboard"))
    return render_template("admin/login.html")


@admin.route("/logout")
def logout():
    session.clear()
    return redirect(url_for("admin.login"))


@admin.route("/")
@login_required
def dashboard():
    posts, page = list_posts(author=g.user)
    return render_template("admin/dashboard.html", posts=posts, page=page)


@admin.route("/add", methods=["GET", "POST"])
@login_required
def add_post():
    if request.method == "GET":
        return render_template("admin/add.html")

    fields = read_post_form()
    if not fields["title"]:
        flash("Title is required", "error")
        return redirect(url_for("admin.add_post"))

    uploads = get_uploads()
    try:
        staged = uploads.stage(request.files.get("image"))
    except UploadError as exc:
        abort(400, description=str(exc))

    fields["author"] = g.user
    fields["slug"] = slugify_title(fields["title"])
    fields["image"] = staged.url
    store = get_store()
    try:
        created = store.create_post(fields)
    except StoreError:
        uploads.discard(staged)
        raise
    try:
        uploads.commit(staged)
    except OSError:
        store.delete_post(created["id"])
        uploads.discard(staged)
        raise

    current_app.logger.info("%s created post %s (%s)", g.user, created["id"], created["slug"])
    flash("Post created", "success")
    return redirect(url_for("admin.dashboard"))


@admin.route("/edit/<post_id>", methods=["GET", "POST"])
@login_required
def edit_post(post_id: str):
    existing = load_editable_post(post_id)
    if request.method == "GET":
        return render_template("admin/edit.html", post=existing)

    fields = read_post_form()
    if not fields["title"]:
        flash("Title is required", "error")
        return redirect(url_for("admin.edit_post", post_id=post_id))
    if not get_store().update_post(post_id, fields):
        abort(404, description="Post not found")

    current_app.logger.info("%s updated post %s", g.user, post_id)
    flash("Post updated", "success")
    return redirect(url_for("admin.dashboard"))


@admin.route("/delete/<post_id>")
@login_required
def delete_post(post_id: str):
    load_editable_post(post_id)
    deleted = get_store().delete_post(post_id)
    if not deleted:
        abort(404, description="Post not found")
    get_uploads().remove(deleted.get("image"))

    current_app.logger.info("%s deleted post %s", g.user, post_id)
    flash("Post deleted", "success")
    return redirect(url_for("admin.dashboard"))


def show_error_details() -> bool:
    return current_app.debug or current_app.config.get("SHOW_ERROR_DETAILS", False)


def handle_http_error(exc: HTTPException):
    return render_template("error.html", code=exc.code, message=exc.description), exc.code


def handle_store_error(exc: StoreError):
    current_app.logger.exception("Store failure on %s %s", request.method, request.path)
    message = str(exc) if show_error_details() else "Something went wrong"
    return render_template("error.html", code=500, message=message), 500


def handle_server_error(exc: InternalServerError):
    original = exc.original_exception or exc
    message = str(original) if show_error_details() else "Something went wrong"
    return render_template("error.html", code=500, message=message), 500


def configure_logging(app: Flask) -> None:
    log_dir = app.config.get("LOG_DIR")
    if log_dir and not app.testing:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "app.log"),
            maxBytes=10240,
            backupCount=5,
        )
        file_handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)
    app.logger.setLevel(logging.INFO)

    @app.after_request
    def trace_request(response):
        app.logger.info("%s %s %s", request.method, request.path, response.status_code)
        return response


def create_app(store=None, **overrides) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config)
    app.config.update(overrides)

    configure_logging(app)

    if store is None:
        store = open_store(app.config["STORE_URI"])
        atexit.register(store.close)
    app.extensions["store"] = store
    app.extensions["uploads"] = UploadStore(
        app.config["UPLOAD_DIR"],
        app.config["UPLOAD_STAGING_DIR"],
        allowed_extensions=app.config["ALLOWED_IMAGE_EXTENSIONS"],
    )

    app.register_blueprint(blog)
    app.register_blueprint(admin)
    app.register_error_handler(HTTPException, handle_http_error)
    app.register_error_handler(StoreError, handle_store_error)
    app.register_error_handler(InternalServerError, handle_server_error)

    @app.context_processor
    def inject_globals():
        return {
            "site_title": app.config["SITE_TITLE"],
            "site_description": app.config["SITE_DESCRIPTION"],
            "current_user": session.get("user"),
            "format_date": format_date,
            "build_excerpt": build_excerpt,
        }

    app.logger.info("Devblog startup (store: %s)", type(store).__name__)
    return app


if __name__ == "__main__":
    create_app().run(debug=True)
