import os
import uuid
from typing import Optional

from flask import (
    Blueprint, Flask, current_app, jsonify, render_template_string, request, send_from_directory, session
)
from PIL import Image, UnidentifiedImageError
from sqlalchemy.exc import SQLAlchemyError

from config import Config
from errors import ForbiddenError, GuesserError, InvalidInputError, NotFoundError
from game import GameSession
from logger import setup_logger
from records import hypothetical_rank, leaderboard, non_negative_int, record_game_completion
from scoring import parse_point, round_half_up, score_guess, score_quick_play
from storage import Store

ALLOWED_EXT = {".png", ".jpg", ".jpeg", ".webp"}

logger = setup_logger(__name__)
bp = Blueprint("guesser", __name__)


# -----------------------------
# Helpers
# -----------------------------
def get_store() -> Store:
    return current_app.extensions["store"]


def ext_ok(filename: str) -> bool:
    _, ext = os.path.splitext(filename.lower())
    return ext in ALLOWED_EXT


def json_body() -> dict:
    return request.get_json(force=True, silent=True) or {}


def optional_int(field: str, value) -> Optional[int]:
    if value is None or value == "":
        return None
    return non_negative_int(field, value)


def save_upload(file_storage, kind: str) -> str:
    """Store an uploaded image under UPLOAD_DIR/<kind>/ and return its relative path."""
    if not file_storage or file_storage.filename == "":
        raise InvalidInputError("image", "no file selected")
    if not ext_ok(file_storage.filename):
        raise InvalidInputError("image", "unsupported file type, use png/jpg/jpeg/webp")
    _, ext = os.path.splitext(file_storage.filename.lower())
    safe_name = f"{kind[:-1]}_{uuid.uuid4().hex}{ext}"
    directory = os.path.join(current_app.config["UPLOAD_DIR"], kind)
    os.makedirs(directory, exist_ok=True)
    file_storage.save(os.path.join(directory, safe_name))
    return f"{kind}/{safe_name}"


def image_size(rel_path: str):
    path = os.path.join(current_app.config["UPLOAD_DIR"], rel_path)
    try:
        with Image.open(path) as im:
            return im.size
    except (UnidentifiedImageError, OSError):
        os.remove(path)
        raise InvalidInputError("image", "file is not a readable image")


def score_location(location_id, guess_x, guess_y, selected_floor=None, quick_play: bool = False) -> dict:
    """Look up a location and its floor, score the guess, and reveal the answer."""
    if location_id is None:
        raise InvalidInputError("location_id", "value is required")
    store = get_store()
    loc = store.get_location(non_negative_int("location_id", location_id))
    floor = store.get_floor(loc.floor_id)
    guess = parse_point("guess", (guess_x, guess_y))
    radius = current_app.config["CORRECT_RADIUS_PX"]

    if quick_play:
        result = score_quick_play(loc.answer_xy, guess, floor.map_size, correct_radius=radius)
    else:
        selected = optional_int("selected_floor", selected_floor)
        floor_match = None if selected is None else selected == loc.floor_id
        result = score_guess(loc.answer_xy, guess, floor.map_size, floor_match=floor_match,
                             correct_radius=radius)

    return {
        **result.to_dict(),
        "correct_x": loc.x,
        "correct_y": loc.y,
        "correct_floor_id": loc.floor_id,
        "floor_width": floor.width_px,
        "floor_height": floor.height_px,
    }


def load_game() -> GameSession:
    data = session.get("game")
    if not data:
        raise NotFoundError("game")
    return GameSession.from_dict(data)


def save_game(game: GameSession):
    session["game"] = game.to_dict()


def next_round_payload(game: GameSession) -> dict:
    """
    Pick the location for the next round, or nothing once the game is over.

    When no location is left to pick, the round stays open with no location
    and the caller decides whether that is an error.
    """
    game.location_id = None
    if game.is_finished:
        return {"game": game.summary()}
    store = get_store()
    try:
        loc = store.random_location()
        floor = store.get_floor(loc.floor_id)
    except NotFoundError as e:
        logger.warning(f"No location for round {game.current_round}: {e}")
        return {"game": game.summary()}
    game.location_id = loc.id
    return {"game": game.summary(), "location": loc.to_dict(reveal=False), "floor": floor.to_dict()}


# -----------------------------
# Routes: static uploads
# -----------------------------
@bp.route("/uploads/<path:filename>")
def uploads(filename):
    return send_from_directory(current_app.config["UPLOAD_DIR"], filename)


# -----------------------------
# API: floors, locations, users
# -----------------------------
@bp.route("/api/health")
def api_health():
    return jsonify({"ok": True})


@bp.route("/api/floors", methods=["GET"])
def api_floors():
    return jsonify({"ok": True, "floors": [f.to_dict() for f in get_store().list_floors()]})


@bp.route("/api/floors/<int:floor_id>", methods=["GET"])
def api_floor(floor_id):
    return jsonify({"ok": True, "floor": get_store().get_floor(floor_id).to_dict()})


@bp.route("/api/floors", methods=["POST"])
def api_add_floor():
    rel_path = save_upload(request.files.get("image"), "floors")
    w, h = image_size(rel_path)
    floor = get_store().add_floor(
        image_path=f"/uploads/{rel_path}",
        width_px=w,
        height_px=h,
        name=request.form.get("name") or None,
        building=request.form.get("building") or None,
        level=request.form.get("level") or None,
    )
    return jsonify({"ok": True, "floor": floor.to_dict()}), 201


@bp.route("/api/floors/<int:floor_id>", methods=["DELETE"])
def api_delete_floor(floor_id):
    get_store().delete_floor(floor_id)
    return jsonify({"ok": True, "deleted": floor_id})


@bp.route("/api/locations", methods=["GET"])
def api_locations():
    """Admin listing of every location with its answer, newest first."""
    if request.args.get("admin") != "1":
        raise ForbiddenError("location listing")
    return jsonify({"ok": True, "locations": [loc.to_dict() for loc in get_store().list_locations()]})


@bp.route("/api/locations", methods=["POST"])
def api_add_location():
    floor_id = non_negative_int("floor_id", request.form.get("floor_id"))
    x, y = parse_point("location", (request.form.get("x"), request.form.get("y")))
    store = get_store()
    store.get_floor(floor_id)
    rel_path = save_upload(request.files.get("image"), "locations")
    loc = store.add_location(
        floor_id=floor_id,
        x=round_half_up(x),
        y=round_half_up(y),
        image_path=f"/uploads/{rel_path}",
        name=request.form.get("name") or None,
        hint=request.form.get("hint") or None,
    )
    return jsonify({"ok": True, "location": loc.to_dict()}), 201


@bp.route("/api/locations/random", methods=["GET"])
def api_random_location():
    store = get_store()
    loc = store.random_location(optional_int("floor_id", request.args.get("floor_id")))
    floor = store.get_floor(loc.floor_id)
    # the answer stays on the server
    return jsonify({"ok": True, "location": loc.to_dict(reveal=False), "floor": floor.to_dict()})


@bp.route("/api/users", methods=["POST"])
def api_add_user():
    name = (json_body().get("display_name") or "").strip()
    if not name:
        raise InvalidInputError("display_name", "name cannot be empty")
    return jsonify({"ok": True, "user": get_store().add_user(name).to_dict()}), 201


# -----------------------------
# API: scoring
# -----------------------------
@bp.route("/api/guess", methods=["POST"])
def api_guess():
    data = json_body()
    result = score_location(data.get("location_id"), data.get("guess_x"), data.get("guess_y"),
                            selected_floor=data.get("selected_floor"))
    return jsonify({"ok": True, **result})


@bp.route("/api/quick-guess", methods=["POST"])
def api_quick_guess():
    data = json_body()
    result = score_location(data.get("location_id"), data.get("guess_x"), data.get("guess_y"),
                            quick_play=True)
    return jsonify({"ok": True, **result})


# -----------------------------
# API: game session
# -----------------------------
@bp.route("/api/game/start", methods=["POST"])
def api_game_start():
    data = json_body()
    rounds = optional_int("total_rounds", data.get("total_rounds")) or current_app.config["TOTAL_ROUNDS"]
    game = GameSession(total_rounds=rounds)
    payload = next_round_payload(game)
    if game.location_id is None:
        raise NotFoundError("location")
    save_game(game)
    return jsonify({"ok": True, **payload})


@bp.route("/api/game", methods=["GET"])
def api_game_state():
    return jsonify({"ok": True, "game": load_game().summary()})


@bp.route("/api/game/guess", methods=["POST"])
def api_game_guess():
    data = json_body()
    game = load_game()
    if game.is_finished:
        raise InvalidInputError("round", "no round in progress")

    try:
        if game.location_id is None:
            raise NotFoundError("location")
        result = score_location(game.location_id, data.get("guess_x"), data.get("guess_y"),
                                selected_floor=data.get("selected_floor"))
    except NotFoundError:
        # the round's location (or its floor) was deleted mid-game
        payload = next_round_payload(game)
        if game.location_id is None:
            raise
        save_game(game)
        return jsonify({"ok": False, "error": "This round's location is gone, a new one was picked.",
                        **payload}), 409

    game.add_score(result["score"])
    # the score is kept even if picking the next location fails
    save_game(game)
    payload = next_round_payload(game)
    save_game(game)
    return jsonify({"ok": True, "result": result, **payload})


@bp.route("/api/game/finish", methods=["POST"])
def api_game_finish():
    data = json_body()
    game = load_game()
    if not game.is_finished:
        raise InvalidInputError("game", f"{game.rounds_remaining} rounds still to play")

    user_id = optional_int("user_id", data.get("user_id"))
    outcome = record_game_completion(get_store(), user_id, game.total_score, game.round_index)
    session.pop("game", None)

    body = {"ok": True, **outcome.to_dict()}
    if user_id is None:
        board = leaderboard(get_store(), current_app.config["LEADERBOARD_LIMIT"])
        body["hypothetical_rank"] = hypothetical_rank(board, outcome.score)
    return jsonify(body)


@bp.route("/api/game-results", methods=["POST"])
def api_game_results():
    data = json_body()
    outcome = record_game_completion(
        get_store(),
        optional_int("user_id", data.get("user_id")),
        data.get("total_score"),
        data.get("rounds_played"),
    )
    return jsonify({"ok": True, **outcome.to_dict()})


# -----------------------------
# API: leaderboard
# -----------------------------
def limit_arg() -> int:
    return optional_int("limit", request.args.get("limit")) or current_app.config["LEADERBOARD_LIMIT"]


@bp.route("/api/leaderboard", methods=["GET"])
def api_leaderboard():
    board = leaderboard(get_store(), limit_arg())
    return jsonify({"ok": True, "leaderboard": [e.to_dict() for e in board]})


@bp.route("/api/leaderboard/rank", methods=["GET"])
def api_hypothetical_rank():
    board = leaderboard(get_store(), limit_arg())
    rank = hypothetical_rank(board, request.args.get("score"))
    return jsonify({"ok": True, "rank": rank, "in_top": rank <= len(board)})


# -----------------------------
# Pages
# -----------------------------
@bp.route("/")
@bp.route("/leaderboard")
def leaderboard_page():
    board = leaderboard(get_store(), limit_arg())
    guest_score = request.args.get("score")
    guest_rank = hypothetical_rank(board, guest_score) if guest_score else None

    return render_template_string("""
<!doctype html>
<html><head>
  <meta charset="utf-8" />
  <title>Leaderboard</title>
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <style>
    :root{
      --bg:#f6f7fb; --card:#ffffff; --text:#101828; --muted:#475467;
      --border:#e4e7ec; --accent:#2563eb; --accent2:#1d4ed8;
      --good:#067647; --bad:#b42318; --radius:14px;
    }
    body{ margin:0; font-family: ui-sans-serif, system-ui, -apple-system, Segoe UI, Roboto, Arial, sans-serif;
      color:var(--text); background: linear-gradient(180deg, #f6f7fb, #eef2ff); padding:24px 18px; }
    .wrap{max-width:800px; margin:0 auto;}
    h1{margin:0; font-size:26px; letter-spacing:-0.02em;}
    .card{ background: var(--card); border-radius: var(--radius); padding: 18px; border: 1px solid var(--border); margin: 12px 0; }
    table{width:100%; border-collapse:collapse;}
    th, td{padding:10px 6px; border-bottom: 1px solid var(--border); text-align:left; font-size:14px;}
    .muted{color:var(--muted);}
    .tag{
      display:inline-flex; padding: 4px 10px; border-radius: 999px;
      background: #eff6ff; color: #1d4ed8; font-weight: 800; font-size: 12px; border: 1px solid #dbeafe;
    }
  </style>
</head><body>
  <div class="wrap">
    <h1>Leaderboard</h1>

    <div class="card">
      <div class="tag">Best totals</div>
      {% if not board %}
        <p class="muted">No games recorded yet.</p>
      {% else %}
        <table style="margin-top:10px;">
          <tr><th>Rank</th><th>Player</th><th>Best</th></tr>
          {% for e in board %}
            <tr><td>{{e.rank}}</td><td>{{e.name}}</td><td>{{e.score}}</td></tr>
          {% endfor %}
        </table>
      {% endif %}
      {% if guest_rank %}
        <p style="margin:10px 0 0 0;">
          {% if guest_rank <= board|length %}
            With {{guest_score}} points you would place <b>#{{guest_rank}}</b> if you were signed in.
          {% else %}
            With {{guest_score}} points you would place <b>#{{guest_rank}}</b>, just outside the top.
          {% endif %}
        </p>
      {% endif %}
      <p class="muted" style="margin:10px 0 0 0;">Each player's best game of {{rounds}} rounds, up to 100 points per round.</p>
    </div>
  </div>
</body></html>
""", board=board, guest_rank=guest_rank, guest_score=guest_score, rounds=current_app.config["TOTAL_ROUNDS"])


# -----------------------------
# Errors
# -----------------------------
def handle_guesser_error(e: GuesserError):
    logger.debug(f"{type(e).__name__}: {e}")
    return jsonify({"ok": False, "error": e.user_message}), e.status_code


def handle_storage_error(e: SQLAlchemyError):
    logger.error(f"Storage failure: {e}")
    return jsonify({"ok": False, "error": "Storage unavailable, try again later."}), 503


# -----------------------------
# App
# -----------------------------
def create_app(overrides: Optional[dict] = None) -> Flask:
    settings = Config.as_dict()
    settings.update(overrides or {})
    Config.validate(settings)

    app = Flask(__name__)
    app.config.update(settings)
    os.makedirs(app.config["UPLOAD_DIR"], exist_ok=True)

    app.extensions["store"] = Store(app.config["DATABASE_URL"])
    app.register_blueprint(bp)
    app.register_error_handler(GuesserError, handle_guesser_error)
    app.register_error_handler(SQLAlchemyError, handle_storage_error)
    return app


if __name__ == "__main__":
    app = create_app()
    logger.info(f"Running on http://{Config.APP_HOST}:{Config.APP_PORT}")
    app.run(host=Config.APP_HOST, port=Config.APP_PORT, debug=Config.DEBUG)
