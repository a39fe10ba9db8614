import os
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import (
    Column, Integer, String, DateTime, Text, ForeignKey, create_engine, event, func, select
)
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from errors import NotFoundError
from logger import setup_logger

Base = declarative_base()


# -----------------------------
# Models
# -----------------------------
class Floor(Base):
    __tablename__ = 'floors'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=True)
    building = Column(String(200), nullable=True)
    level = Column(String(50), nullable=True)
    image_path = Column(String(500), nullable=False)
    width_px = Column(Integer, nullable=False)
    height_px = Column(Integer, nullable=False)

    locations = relationship("Location", back_populates="floor", cascade="all, delete-orphan")

    @property
    def map_size(self) -> Tuple[int, int]:
        return self.width_px, self.height_px

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "building": self.building,
            "level": self.level,
            "image_path": self.image_path,
            "width_px": self.width_px,
            "height_px": self.height_px,
        }

    def __repr__(self):
        return f"<Floor(id={self.id}, {self.width_px}x{self.height_px})>"


class Location(Base):
    __tablename__ = 'locations'

    id = Column(Integer, primary_key=True)
    floor_id = Column(Integer, ForeignKey('floors.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String(200), nullable=True)
    x = Column(Integer, nullable=False)
    y = Column(Integer, nullable=False)
    image_path = Column(String(500), nullable=False)
    hint = Column(Text, nullable=True)

    floor = relationship("Floor", back_populates="locations")

    @property
    def answer_xy(self) -> Tuple[int, int]:
        return self.x, self.y

    def to_dict(self, reveal: bool = True) -> dict:
        data = {
            "id": self.id,
            "floor_id": self.floor_id,
            "name": self.name,
            "image_path": self.image_path,
            "hint": self.hint,
        }
        if reveal:
            data.update(x=self.x, y=self.y)
        return data

    def __repr__(self):
        return f"<Location(id={self.id}, floor={self.floor_id}, at=({self.x}, {self.y}))>"


class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    display_name = Column(String(200), nullable=False)
    created_at = Column(DateTime, default=func.now())

    game_results = relationship("GameResult", back_populates="user", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {"id": self.id, "display_name": self.display_name}

    def __repr__(self):
        return f"<User(id={self.id}, name='{self.display_name}')>"


class GameResult(Base):
    __tablename__ = 'game_results'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    total_score = Column(Integer, nullable=False, index=True)
    rounds_played = Column(Integer, nullable=False)
    played_at = Column(DateTime, default=func.now())

    user = relationship("User", back_populates="game_results")

    def __repr__(self):
        return f"<GameResult(user={self.user_id}, score={self.total_score}, rounds={self.rounds_played})>"


# -----------------------------
# Store
# -----------------------------
class Store:
    """SQLAlchemy-backed storage for floors, locations, users and game history."""

    def __init__(self, database_url: str = "sqlite://", echo: bool = False):
        self.logger = setup_logger(__name__)

        url = make_url(database_url)
        engine_kwargs = {"echo": echo, "future": True}
        if url.get_backend_name() == "sqlite":
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                # one shared connection, otherwise every session sees an empty database
                engine_kwargs["poolclass"] = StaticPool
            else:
                os.makedirs(os.path.dirname(os.path.abspath(url.database)), exist_ok=True)
        self.engine = create_engine(database_url, **engine_kwargs)

        if url.get_backend_name() == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self.session_factory = sessionmaker(self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)
        self.logger.info(f"Storage ready at {self.engine.url!r}")

    @contextmanager
    def get_session(self):
        """Get a database session, committed on success"""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # Floors
    def add_floor(self, image_path: str, width_px: int, height_px: int,
                  name: Optional[str] = None, building: Optional[str] = None,
                  level: Optional[str] = None) -> Floor:
        floor = Floor(image_path=image_path, width_px=width_px, height_px=height_px,
                      name=name, building=building, level=level)
        with self.get_session() as session:
            session.add(floor)
        self.logger.info(f"Added floor {floor.id} ({width_px}x{height_px})")
        return floor

    def list_floors(self) -> List[Floor]:
        with self.get_session() as session:
            return list(session.scalars(select(Floor).order_by(Floor.building, Floor.level, Floor.id)))

    def get_floor(self, floor_id: int) -> Floor:
        with self.get_session() as session:
            floor = session.get(Floor, floor_id)
        if floor is None:
            raise NotFoundError("floor", floor_id)
        return floor

    def delete_floor(self, floor_id: int) -> None:
        with self.get_session() as session:
            floor = session.get(Floor, floor_id)
            if floor is None:
                raise NotFoundError("floor", floor_id)
            session.delete(floor)
        self.logger.info(f"Deleted floor {floor_id} and its locations")

    # Locations
    def add_location(self, floor_id: int, x: int, y: int, image_path: str,
                     name: Optional[str] = None, hint: Optional[str] = None) -> Location:
        with self.get_session() as session:
            if session.get(Floor, floor_id) is None:
                raise NotFoundError("floor", floor_id)
            location = Location(floor_id=floor_id, x=x, y=y, image_path=image_path, name=name, hint=hint)
            session.add(location)
        self.logger.info(f"Added location {location.id} on floor {floor_id}")
        return location

    def get_location(self, location_id: int) -> Location:
        with self.get_session() as session:
            location = session.get(Location, location_id)
        if location is None:
            raise NotFoundError("location", location_id)
        return location

    def list_locations(self) -> List[Location]:
        """Every location, newest first."""
        with self.get_session() as session:
            return list(session.scalars(select(Location).order_by(Location.id.desc())))

    def random_location(self, floor_id: Optional[int] = None) -> Location:
        query = select(Location)
        if floor_id is not None:
            query = query.where(Location.floor_id == floor_id)
        with self.get_session() as session:
            location = session.scalars(query.order_by(func.random()).limit(1)).first()
        if location is None:
            raise NotFoundError("location")
        return location

    # Users
    def add_user(self, display_name: str) -> User:
        user = User(display_name=display_name)
        with self.get_session() as session:
            session.add(user)
        self.logger.info(f"Added user {user.id} '{display_name}'")
        return user

    def user_display_name(self, user_id: int) -> str:
        with self.get_session() as session:
            user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("user", user_id)
        return user.display_name

    def display_names(self, user_ids: Iterable[int]) -> Dict[int, str]:
        ids = list(user_ids)
        if not ids:
            return {}
        with self.get_session() as session:
            rows = session.execute(select(User.id, User.display_name).where(User.id.in_(ids)))
            return {row.id: row.display_name for row in rows}

    # Game history
    def best_score_for_user(self, user_id: int) -> Optional[int]:
        with self.get_session() as session:
            return session.scalar(
                select(func.max(GameResult.total_score)).where(GameResult.user_id == user_id)
            )

    def insert_game_result(self, user_id: int, total_score: int, rounds_played: int) -> int:
        result = GameResult(user_id=user_id, total_score=total_score, rounds_played=rounds_played)
        with self.get_session() as session:
            session.add(result)
        return result.id

    def best_score_per_user(self) -> List[Tuple[int, int]]:
        """(user_id, best total) for every user with history, best first."""
        best = func.max(GameResult.total_score).label('best')
        query = (
            select(GameResult.user_id, best)
            .group_by(GameResult.user_id)
            .order_by(best.desc(), GameResult.user_id)
        )
        with self.get_session() as session:
            return [(row.user_id, row.best) for row in session.execute(query)]


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
