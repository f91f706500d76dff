from __future__ import annotations


class AnimeBridgeError(RuntimeError):
    """Base class for every failure raised along the lookup path."""


class NotFoundError(AnimeBridgeError):
    def __init__(self, message: str, *, anilist_id: int | None = None) -> None:
        super().__init__(message)
        self.anilist_id = anilist_id


class EpisodeNotFoundError(NotFoundError):
    def __init__(self, *, anilist_id: int, episode_number: int) -> None:
        super().__init__(
            f"Episode {episode_number} not found for anime with AniList ID {anilist_id}",
            anilist_id=anilist_id,
        )
        self.episode_number = episode_number


class ServerNotFoundError(NotFoundError):
    def __init__(
        self,
        *,
        anilist_id: int,
        episode_number: int,
        server: str,
        stream_type: str,
    ) -> None:
        super().__init__(
            (
                f"Server {server!r} ({stream_type}) not available for episode "
                f"{episode_number} of AniList ID {anilist_id}"
            ),
            anilist_id=anilist_id,
        )
        self.episode_number = episode_number
        self.server = server
        self.stream_type = stream_type


class NoTitleError(AnimeBridgeError):
    def __init__(self, *, anilist_id: int) -> None:
        super().__init__(f"AniList ID {anilist_id} has neither an English nor a romaji title")
        self.anilist_id = anilist_id


class NoMatchError(AnimeBridgeError):
    def __init__(self, *, anilist_id: int, query_title: str) -> None:
        super().__init__(
            f"No catalog matches found for AniList ID {anilist_id} (query={query_title!r})"
        )
        self.anilist_id = anilist_id
        self.query_title = query_title


class FetchError(AnimeBridgeError):
    """Upstream transport, status or payload failure.

    ``status_code`` is ``None`` when the request never produced a response.
    """

    def __init__(
        self,
        message: str,
        *,
        url: str,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.body = body

    @property
    def is_transport_error(self) -> bool:
        return self.status_code is None


class CacheWriteError(AnimeBridgeError):
    def __init__(self, message: str, *, cache_key: str) -> None:
        super().__init__(message)
        self.cache_key = cache_key
