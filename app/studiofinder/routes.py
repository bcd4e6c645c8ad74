import mimetypes
from datetime import datetime

from flask import Blueprint, abort, current_app, render_template, send_file

from app.studiofinder.db import db_session
from app.studiofinder.modules.memberships.promo import get_price_display, get_promo_config_from_db, get_signup_cta_text
from app.studiofinder.modules.notifications.service import unsubscribe
from app.studiofinder.modules.reviews.service import list_approved_reviews, rating_summary
from app.studiofinder.modules.studios.api import PROFILE_REVIEW_LIMIT, find_public_studio
from app.studiofinder.modules.studios.models import STUDIO_STATUS_ACTIVE, StudioProfile
from app.studiofinder.modules.studios.seo import build_profile_meta_title
from app.studiofinder.modules.studios.service import serialize_public_studio
from app.studiofinder.storage import LocalStorage, StorageError, storage_from_config

bp = Blueprint("routes", __name__)

HOME_FEATURED_LIMIT = 6


@bp.get("/")
def index():
    s = db_session()
    now = datetime.utcnow()
    featured = (
        s.query(StudioProfile)
        .filter(
            StudioProfile.status == STUDIO_STATUS_ACTIVE,
            StudioProfile.is_profile_visible.is_(True),
            StudioProfile.is_featured.is_(True),
        )
        .filter((StudioProfile.featured_until.is_(None)) | (StudioProfile.featured_until > now))
        .order_by(StudioProfile.updated_at.desc())
        .limit(HOME_FEATURED_LIMIT)
        .all()
    )
    promo = get_promo_config_from_db(s, current_app.config)
    return render_template(
        "public/index.html",
        featured=featured,
        promo=promo,
        price=get_price_display(promo),
        cta_text=get_signup_cta_text(promo),
    )


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """Liveness check. No DB access."""
    return "ok", 200


@bp.get("/media/<path:key>")
def media(key: str):
    """Serves uploads when STORAGE_BACKEND=local; S3 URLs point at the bucket directly."""
    storage = storage_from_config(current_app.config)
    if not isinstance(storage, LocalStorage):
        abort(404)
    try:
        fh = storage.open(key)
    except (FileNotFoundError, StorageError):
        abort(404)
    return send_file(fh, mimetype=mimetypes.guess_type(key)[0] or "application/octet-stream", max_age=86400)


@bp.get("/unsubscribe/<token>")
def unsubscribe_page(token: str):
    s = db_session()
    pref = unsubscribe(s, token)
    if pref is None:
        return render_template("public/unsubscribe.html", ok=False), 404
    s.commit()
    return render_template("public/unsubscribe.html", ok=True)


@bp.get("/<username>")
def studio_page(username: str):
    s = db_session()
    studio = find_public_studio(s, username)
    if studio is None:
        abort(404)
    reviews, _total = list_approved_reviews(s, studio.id, limit=PROFILE_REVIEW_LIMIT)
    primary_type = studio.type_keys[0] if studio.type_keys else None
    return render_template(
        "public/studio.html",
        studio=serialize_public_studio(studio),
        reviews=reviews,
        rating=rating_summary(s, studio.id),
        meta_title=build_profile_meta_title(studio.name, primary_type, studio.city),
    )
