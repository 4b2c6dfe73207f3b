import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

import catalog
import config
import playlists
import ratings
from auth import Actor, get_actor, require_actor, require_admin
from database import MongoStore, get_store
from errors import CatalogError, NotFound, PermissionDenied
from schemas import (
    MediaReference,
    PermissionLevel,
    Playlist,
    PlaylistCategory,
    PlaylistPrivacy,
    Song,
    SongStatus,
    User,
)
from social import is_following_playlist

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("catalog")

app = FastAPI(title="Music Catalog Service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error rendering

@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, exc: CatalogError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message, "error": exc.kind},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Validation failed",
            "error": "ValidationError",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error", "error": "InternalError"},
    )


# Helpers

def ok(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = jsonable_encoder(data)
    return body


def pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    return {
        "current": page,
        "pages": -(-total // limit) if limit else 0,
        "total": total,
        "has_next": page * limit < total,
        "has_prev": page > 1,
    }


def song_out(song: Song) -> Dict[str, Any]:
    return song.model_dump(mode="json")


def playlist_out(playlist: Playlist, tracks: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    data = playlist.model_dump(mode="json")
    data["song_count"] = len(playlist.songs)
    data["follower_count"] = len(playlist.followers)
    if tracks is not None:
        data["tracks"] = [
            {**t["entry"].model_dump(mode="json"), "song": song_out(t["song"])} for t in tracks
        ]
    return data


def user_out(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "role": user.role,
        "ratings_given": user.ratings_given,
        "playlists_created": user.playlists_created,
        "follower_count": len(user.followers),
        "following_count": len(user.following),
        "liked_count": len(user.liked_songs),
    }


@app.get("/")
def read_root():
    return {"message": "Music Catalog Service API"}


@app.get("/api/health")
def health():
    response = {
        "success": True,
        "backend": "running",
        "database": "not configured",
        "database_url": "set" if os.getenv("DATABASE_URL") else "not set",
        "database_name": "set" if os.getenv("DATABASE_NAME") else "not set",
        "collections": [],
    }
    try:
        store = get_store()
    except CatalogError:
        return response
    try:
        response["collections"] = store.ping()[:10]
        response["database"] = "connected"
    except Exception as e:
        logger.warning("Health check could not reach the database: %s", e)
        response["database"] = "unreachable"
    return response


# Request bodies

class SongIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    artist: str = Field(..., min_length=1, max_length=100)
    album: Optional[str] = Field(None, max_length=200)
    duration: int = Field(..., gt=0, description="Seconds")
    genre: List[str] = Field(..., min_length=1)
    language: str = Field(..., min_length=1)
    audio: MediaReference
    cover: Optional[MediaReference] = None
    featured: bool = False


class SongUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    artist: Optional[str] = Field(None, min_length=1, max_length=100)
    album: Optional[str] = Field(None, max_length=200)
    duration: Optional[int] = Field(None, gt=0)
    genre: Optional[List[str]] = Field(None, min_length=1)
    language: Optional[str] = Field(None, min_length=1)
    status: Optional[SongStatus] = None
    audio: Optional[MediaReference] = None
    cover: Optional[MediaReference] = None


class UserIn(BaseModel):
    username: str = Field(..., min_length=3, max_length=30, pattern=r"^[A-Za-z0-9_]+$")


class RatingIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)


class PlaylistIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    privacy: PlaylistPrivacy = "public"
    category: PlaylistCategory = "personal"
    tags: List[str] = Field(default_factory=list)
    cover: Optional[MediaReference] = None


class PlaylistUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    privacy: Optional[PlaylistPrivacy] = None
    category: Optional[PlaylistCategory] = None
    tags: Optional[List[str]] = None
    cover: Optional[MediaReference] = None


class AddSongIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    song_id: str = Field(..., alias="songId")


class PositionIn(BaseModel):
    position: int


class CollaboratorIn(BaseModel):
    permission: PermissionLevel = "view"


# Songs

@app.post("/api/songs", status_code=201)
def create_song(body: SongIn, actor: Actor = Depends(require_admin), store: MongoStore = Depends(get_store)):
    song = catalog.create_song(store, body.model_dump(), actor.user_id)
    return ok(song_out(song), "Song created successfully")


@app.get("/api/songs")
def list_songs(
    page: int = Query(1, ge=1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
    genre: Optional[List[str]] = Query(None),
    language: Optional[str] = None,
    artist: Optional[str] = None,
    store: MongoStore = Depends(get_store),
):
    songs, total = catalog.list_songs(store, page, limit, genre, language, artist)
    return ok({"songs": [song_out(s) for s in songs], "pagination": pagination(page, limit, total)})


@app.get("/api/songs/featured")
def featured_songs(
    limit: int = Query(10, ge=1, le=config.MAX_PAGE_SIZE),
    store: MongoStore = Depends(get_store),
):
    return ok({"songs": [song_out(s) for s in catalog.list_featured_songs(store, limit)]})


@app.get("/api/songs/{song_id}")
def get_song(song_id: str, store: MongoStore = Depends(get_store)):
    return ok({"song": song_out(catalog.get_song(store, song_id))})


@app.put("/api/songs/{song_id}")
def update_song(song_id: str, body: SongUpdate, actor: Actor = Depends(require_admin),
                store: MongoStore = Depends(get_store)):
    song = catalog.update_song(store, song_id, body.model_dump(exclude_unset=True))
    return ok({"song": song_out(song)}, "Song updated successfully")


@app.put("/api/songs/{song_id}/featured")
def feature_song(song_id: str, actor: Actor = Depends(require_admin), store: MongoStore = Depends(get_store)):
    song = catalog.toggle_featured(store, song_id)
    state = "featured" if song.featured else "unfeatured"
    return ok({"featured": song.featured}, f"Song {state} successfully")


@app.delete("/api/songs/{song_id}")
def delete_song(song_id: str, actor: Actor = Depends(require_admin), store: MongoStore = Depends(get_store)):
    catalog.deactivate_song(store, song_id)
    return ok(message="Song deactivated successfully")


@app.post("/api/songs/{song_id}/play")
def play_song(song_id: str, store: MongoStore = Depends(get_store)):
    return ok({"play_count": catalog.play_song(store, song_id)}, "Play count updated")


@app.post("/api/songs/{song_id}/like")
def like_song(song_id: str, actor: Actor = Depends(require_actor), store: MongoStore = Depends(get_store)):
    action, like_count = catalog.like_song(store, actor.user_id, song_id)
    return ok({"action": action, "like_count": like_count}, f"Song {action} successfully")


# Users

@app.post("/api/users", status_code=201)
def create_user(body: UserIn, store: MongoStore = Depends(get_store)):
    user = catalog.create_user(store, body.username)
    return ok({"user": user_out(user)}, "User created successfully")


@app.get("/api/users/{user_id}")
def get_user(user_id: str, store: MongoStore = Depends(get_store)):
    user = User.model_validate(_find(store, "user", user_id, "User"))
    return ok({"user": user_out(user)})


@app.post("/api/users/{user_id}/follow")
def follow_user(user_id: str, actor: Actor = Depends(require_actor), store: MongoStore = Depends(get_store)):
    action = catalog.follow_user(store, actor.user_id, user_id)
    return ok({"action": action}, f"User {action} successfully")


@app.get("/api/users/{user_id}/stats")
def get_user_stats(user_id: str, actor: Actor = Depends(require_actor), store: MongoStore = Depends(get_store)):
    if actor.user_id != user_id and not actor.is_admin:
        raise PermissionDenied("Access denied")
    return ok({"stats": catalog.user_stats(store, user_id)})


@app.get("/api/users/{user_id}/ratings")
def get_user_ratings(user_id: str, actor: Actor = Depends(require_actor), store: MongoStore = Depends(get_store)):
    if actor.user_id != user_id and not actor.is_admin:
        raise PermissionDenied("Access denied")
    user = User.model_validate(_find(store, "user", user_id, "User"))
    entries = sorted(user.ratings, key=lambda r: r.rated_at, reverse=True)
    return ok({"ratings": [r.model_dump(mode="json") for r in entries]})


def _find(store: MongoStore, collection: str, doc_id: str, label: str) -> Dict[str, Any]:
    doc = store.find_by_id(collection, doc_id)
    if doc is None:
        raise NotFound(f"{label} not found")
    return doc


# Ratings

@app.get("/api/ratings/top-rated")
def top_rated(
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
    min_ratings: int = Query(5, ge=0),
    store: MongoStore = Depends(get_store),
):
    return ok({"songs": [song_out(s) for s in ratings.top_rated(store, limit, min_ratings)]})


@app.get("/api/ratings/recent")
def recent_ratings(
    limit: int = Query(10, ge=1, le=config.MAX_PAGE_SIZE),
    store: MongoStore = Depends(get_store),
):
    entries = ratings.recent_ratings(store, limit)
    return ok({"ratings": [{**e, "song": song_out(e["song"])} for e in entries]})


@app.post("/api/ratings/{song_id}")
def rate_song(song_id: str, body: RatingIn, actor: Actor = Depends(require_actor),
              store: MongoStore = Depends(get_store)):
    song, previous = ratings.rate_song(store, actor.user_id, song_id, body.rating)
    return ok(
        {
            "rating": body.rating,
            "average": song.ratings.average,
            "count": song.ratings.count,
        },
        "Rating updated successfully" if previous is not None else "Rating added successfully",
    )


@app.delete("/api/ratings/{song_id}")
def remove_rating(song_id: str, actor: Actor = Depends(require_actor), store: MongoStore = Depends(get_store)):
    song = ratings.unrate_song(store, actor.user_id, song_id)
    return ok({"average": song.ratings.average, "count": song.ratings.count}, "Rating removed successfully")


@app.get("/api/ratings/{song_id}")
def song_ratings(song_id: str, store: MongoStore = Depends(get_store)):
    song = catalog.get_song(store, song_id, include_inactive=True)
    return ok(song.ratings.model_dump())


@app.get("/api/ratings/{song_id}/user")
def user_rating(song_id: str, actor: Actor = Depends(require_actor), store: MongoStore = Depends(get_store)):
    user = User.model_validate(_find(store, "user", actor.user_id, "User"))
    entry = ratings.find_user_rating(user, song_id)
    return ok({
        "rating": entry.rating if entry else None,
        "rated_at": entry.rated_at if entry else None,
    })


@app.post("/api/ratings/{song_id}/recompute")
def recompute_ratings(song_id: str, actor: Actor = Depends(require_admin), store: MongoStore = Depends(get_store)):
    song, drifted = ratings.recompute_song_ratings(store, song_id)
    return ok({**song.ratings.model_dump(), "drifted": drifted}, "Rating aggregate rebuilt")


# Playlists

@app.get("/api/playlists")
def list_playlists(
    page: int = Query(1, ge=1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
    category: Optional[PlaylistCategory] = None,
    store: MongoStore = Depends(get_store),
):
    items, total = playlists.list_public(store, page, limit, category)
    return ok({"playlists": [playlist_out(p) for p in items], "pagination": pagination(page, limit, total)})


@app.get("/api/playlists/featured")
def featured_playlists(
    limit: int = Query(10, ge=1, le=config.MAX_PAGE_SIZE),
    store: MongoStore = Depends(get_store),
):
    return ok({"playlists": [playlist_out(p) for p in playlists.list_featured(store, limit)]})


@app.get("/api/playlists/user/{user_id}")
def user_playlists(user_id: str, actor: Actor = Depends(get_actor), store: MongoStore = Depends(get_store)):
    items = playlists.list_for_user(store, user_id, actor.user_id)
    return ok({"playlists": [playlist_out(p) for p in items]})


@app.post("/api/playlists", status_code=201)
def create_playlist(body: PlaylistIn, actor: Actor = Depends(require_actor), store: MongoStore = Depends(get_store)):
    playlist = playlists.create_playlist(store, actor.user_id, body.model_dump())
    return ok({"playlist": playlist_out(playlist)}, "Playlist created successfully")


@app.get("/api/playlists/{playlist_id}")
def get_playlist(playlist_id: str, actor: Actor = Depends(get_actor), store: MongoStore = Depends(get_store)):
    playlist, tracks = playlists.read_playlist(store, playlist_id, actor.user_id)
    data = playlist_out(playlist, tracks)
    if actor.user_id is not None:
        data["is_following"] = is_following_playlist(playlist, actor.user_id)
    return ok({"playlist": data})


@app.put("/api/playlists/{playlist_id}")
def update_playlist(playlist_id: str, body: PlaylistUpdate, actor: Actor = Depends(require_actor),
                    store: MongoStore = Depends(get_store)):
    fields = body.model_dump(exclude_unset=True)
    playlist = playlists.update_playlist(store, playlist_id, actor.user_id, fields)
    return ok({"playlist": playlist_out(playlist)}, "Playlist updated successfully")


@app.delete("/api/playlists/{playlist_id}")
def delete_playlist(playlist_id: str, actor: Actor = Depends(require_actor), store: MongoStore = Depends(get_store)):
    playlists.delete_playlist(store, playlist_id, actor.user_id)
    return ok(message="Playlist deleted successfully")


@app.post("/api/playlists/{playlist_id}/songs")
def add_playlist_song(playlist_id: str, body: AddSongIn, actor: Actor = Depends(require_actor),
                      store: MongoStore = Depends(get_store)):
    playlist = playlists.add_song_to_playlist(store, playlist_id, body.song_id, actor.user_id)
    return ok({"playlist": playlist_out(playlist)}, "Song added to playlist")


@app.delete("/api/playlists/{playlist_id}/songs/{song_id}")
def remove_playlist_song(playlist_id: str, song_id: str, actor: Actor = Depends(require_actor),
                         store: MongoStore = Depends(get_store)):
    playlist = playlists.remove_song_from_playlist(store, playlist_id, song_id, actor.user_id)
    return ok({"playlist": playlist_out(playlist)}, "Song removed from playlist")


@app.put("/api/playlists/{playlist_id}/songs/{song_id}/position")
def move_playlist_song(playlist_id: str, song_id: str, body: PositionIn, actor: Actor = Depends(require_actor),
                       store: MongoStore = Depends(get_store)):
    playlist = playlists.move_song(store, playlist_id, song_id, body.position, actor.user_id)
    return ok({"playlist": playlist_out(playlist)}, "Song position updated")


@app.put("/api/playlists/{playlist_id}/collaborators/{user_id}")
def set_collaborator(playlist_id: str, user_id: str, body: CollaboratorIn, actor: Actor = Depends(require_actor),
                     store: MongoStore = Depends(get_store)):
    playlist = playlists.grant_collaborator(store, playlist_id, user_id, body.permission, actor.user_id)
    return ok({"playlist": playlist_out(playlist)}, "Collaborator saved")


@app.delete("/api/playlists/{playlist_id}/collaborators/{user_id}")
def remove_collaborator(playlist_id: str, user_id: str, actor: Actor = Depends(require_actor),
                        store: MongoStore = Depends(get_store)):
    playlist = playlists.revoke_collaborator(store, playlist_id, user_id, actor.user_id)
    return ok({"playlist": playlist_out(playlist)}, "Collaborator removed")


@app.post("/api/playlists/{playlist_id}/follow")
def follow_playlist(playlist_id: str, actor: Actor = Depends(require_actor), store: MongoStore = Depends(get_store)):
    playlist, action = playlists.follow_playlist(store, playlist_id, actor.user_id)
    return ok({"action": action, "follower_count": len(playlist.followers)}, f"Playlist {action} successfully")


@app.post("/api/playlists/{playlist_id}/play")
def play_playlist(playlist_id: str, actor: Actor = Depends(get_actor), store: MongoStore = Depends(get_store)):
    return ok({"play_count": playlists.play_playlist(store, playlist_id, actor.user_id)}, "Play count updated")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
