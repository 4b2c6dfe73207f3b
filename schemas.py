"""
Database Schemas for the Music Catalog Service

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercased class name. Example: class Song -> "song" collection.

Documents carry an integer ``version`` used for optimistic concurrency; it is
bumped by every write (see database.mutate_document).
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

STARS = (1, 2, 3, 4, 5)

SongStatus = Literal["active", "inactive", "pending", "rejected"]
PlaylistPrivacy = Literal["public", "private", "unlisted"]
PlaylistCategory = Literal["personal", "mood", "genre", "activity", "collaborative", "auto-generated"]
PlaylistStatus = Literal["active", "archived", "deleted"]
PermissionLevel = Literal["view", "edit", "admin"]
Role = Literal["user", "admin"]


def empty_distribution() -> Dict[str, int]:
    # BSON documents need string keys
    return {str(star): 0 for star in STARS}


class MediaReference(BaseModel):
    """Opaque pointer to binary content kept by the external media host."""
    public_id: str = Field(..., description="Identifier on the media host")
    url: str = Field(..., description="Delivery URL")
    size: int = Field(0, ge=0, description="Size in bytes")
    format: str = Field(..., description="File format, e.g. mp3 or jpg")


class RatingSummary(BaseModel):
    average: float = Field(0.0, ge=0, le=5, description="Mean star value")
    count: int = Field(0, ge=0, description="Number of live ratings")
    distribution: Dict[str, int] = Field(
        default_factory=empty_distribution, description="Star value ('1'..'5') -> count"
    )


class Song(BaseModel):
    """
    Songs collection schema
    Collection name: "song"
    """
    id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=200, description="Song title")
    artist: str = Field(..., min_length=1, max_length=100, description="Artist name")
    album: Optional[str] = Field(None, max_length=200, description="Album name")
    duration: int = Field(..., gt=0, description="Duration in seconds")
    genre: List[str] = Field(..., min_length=1, description="Genre tags")
    language: str = Field(..., min_length=1, description="Lyrics language")
    status: SongStatus = Field("active", description="Catalog status")
    audio: Optional[MediaReference] = Field(None, description="Hosted audio file")
    cover: Optional[MediaReference] = Field(None, description="Hosted cover image")
    uploaded_by: Optional[str] = Field(None, description="Uploading user id")
    play_count: int = Field(0, ge=0)
    like_count: int = Field(0, ge=0)
    ratings: RatingSummary = Field(default_factory=RatingSummary)
    featured: bool = False
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserRating(BaseModel):
    song_id: str
    rating: int = Field(..., ge=1, le=5)
    rated_at: datetime


class LikedSong(BaseModel):
    song_id: str
    liked_at: datetime


class UserLink(BaseModel):
    user_id: str
    followed_at: datetime


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    id: Optional[str] = None
    username: str = Field(..., min_length=3, max_length=30, pattern=r"^[A-Za-z0-9_]+$")
    role: Role = "user"
    ratings: List[UserRating] = Field(default_factory=list, description="One entry per rated song")
    liked_songs: List[LikedSong] = Field(default_factory=list)
    following: List[UserLink] = Field(default_factory=list)
    followers: List[UserLink] = Field(default_factory=list)
    ratings_given: int = Field(0, ge=0)
    playlists_created: int = Field(0, ge=0)
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MembershipEntry(BaseModel):
    song_id: str
    added_by: Optional[str] = None
    added_at: datetime
    position: int = Field(..., ge=1)


class Collaborator(BaseModel):
    user_id: str
    permission: PermissionLevel = "view"
    added_at: Optional[datetime] = None


class Follower(BaseModel):
    user_id: str
    followed_at: datetime


class PlaylistMetadata(BaseModel):
    """Derived from membership; never set by clients."""
    total_duration: int = 0
    genres: List[str] = Field(default_factory=list)
    languages: List[str] = Field(default_factory=list)
    average_rating: float = 0.0


class Playlist(BaseModel):
    """
    Playlists collection schema
    Collection name: "playlist"
    """
    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100, description="Playlist name")
    description: Optional[str] = Field(None, max_length=500)
    owner: str = Field(..., description="Owning user id, fixed at creation")
    privacy: PlaylistPrivacy = "public"
    category: PlaylistCategory = "personal"
    tags: List[str] = Field(default_factory=list)
    status: PlaylistStatus = "active"
    cover: Optional[MediaReference] = None
    songs: List[MembershipEntry] = Field(default_factory=list)
    collaborators: List[Collaborator] = Field(default_factory=list)
    followers: List[Follower] = Field(default_factory=list)
    metadata: PlaylistMetadata = Field(default_factory=PlaylistMetadata)
    play_count: int = Field(0, ge=0)
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
