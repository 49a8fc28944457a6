"""
Carb Vision: single-file API + UI

- One command:  python carb_vision.py   (or the `carb-vision` script)
- Auto-opens browser (OPEN_BROWSER=0 to disable)
- Food photo -> Gemini -> per-item carbs/protein/fat/calories
- Manual calculator: total grams x carbs per 100g
- Totals + insulin dose estimate from an adjustable carb-to-insulin ratio
- GEMINI_API_KEY (or API_KEY) is required for photo analysis; the manual
  calculator works without it
Deps:
    pip install -e .
"""
import argparse, base64, binascii, io, json, logging, math, os, socket, webbrowser
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from threading import Timer
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

import uvicorn
from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from google import genai
from google.genai import types
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel

log = logging.getLogger("carb_vision")

# =========================
# Constants
# =========================
API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
PORT = int(os.getenv("PORT", "8000"))
OPEN_BROWSER = os.getenv("OPEN_BROWSER", "1") != "0"
LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()

DEFAULT_RATIO = 25.0     # grams of carbs covered by one unit
RATIO_MIN = 1.0
RATIO_MAX = 50.0
RATIO_STEP = 0.5
MANUAL_ENTRY_NAME = "Manual Entry"
DEFAULT_MIME_TYPE = "image/jpeg"

DISCLAIMER = (
    "This is an estimate based on the provided Carb-to-Insulin Ratio. "
    "It is not medical advice. Always consult with your healthcare provider "
    "before making decisions about your insulin dose."
)
NO_FOOD_MESSAGE = (
    "Could not identify any food items in the image. "
    "Please try another one or use the manual calculator."
)
INVALID_MANUAL_MESSAGE = "Please enter valid positive numbers for calculation."
NO_IMAGE_MESSAGE = "Please select an image first."
UNEXPECTED_ANALYSIS_MESSAGE = "An unexpected error occurred during image analysis."

ANALYSIS_PROMPT = (
    "Analyze the food in this image. Identify each distinct food item, estimate its "
    "portion size, and calculate the estimated grams of carbohydrates, protein, fat, "
    "and total calories for each item. Respond in a JSON array format. Each object in "
    "the array should represent a food item and have six keys: \"foodName\", \"size\", "
    "\"carbohydrates\", \"protein\", \"fat\", and \"calories\". If no food is "
    "identifiable, return an empty array."
)

# =========================
# Errors
# =========================
class CarbVisionError(Exception):
    """Base class; str(err) is always safe to show to the user."""

class ConfigurationError(CarbVisionError):
    pass

class ValidationError(CarbVisionError):
    pass

class AnalysisError(CarbVisionError):
    pass

class StateError(CarbVisionError):
    pass

# =========================
# Entries, totals, dose
# =========================
@dataclass(frozen=True)
class FoodEntry:
    name: str
    portion_description: str
    carbohydrates: float = 0.0
    protein: float = 0.0
    fat: float = 0.0
    calories: float = 0.0

@dataclass(frozen=True)
class Totals:
    carbohydrates: float = 0.0
    protein: float = 0.0
    fat: float = 0.0
    calories: float = 0.0

MACRO_FIELDS = ("carbohydrates", "protein", "fat", "calories")

def _as_number(value: Any) -> float:
    # missing / junk / NaN / negative -> 0
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number

def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)

def _plain_number(value: float) -> str:
    # fixed point, never exponent notation: 250 -> "250", 12.5 -> "12.5"
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return text or "0"

def from_manual(total_grams: float, carbs_per_100g: float) -> FoodEntry:
    """Single manual record; protein/fat/calories are unknown and stay 0."""
    return FoodEntry(
        name=MANUAL_ENTRY_NAME,
        portion_description=f"{_plain_number(total_grams)}g",
        carbohydrates=total_grams * carbs_per_100g / 100,
    )

def from_analysis(raw: Iterable[Any]) -> List[FoodEntry]:
    """Map provider records 1:1, defaulting anything missing or malformed."""
    entries = []
    for record in raw:
        rec = record if isinstance(record, dict) else {}
        entries.append(FoodEntry(
            name=_as_text(rec.get("foodName")),
            portion_description=_as_text(rec.get("size")),
            carbohydrates=_as_number(rec.get("carbohydrates")),
            protein=_as_number(rec.get("protein")),
            fat=_as_number(rec.get("fat")),
            calories=_as_number(rec.get("calories")),
        ))
    return entries

def aggregate(entries: Sequence[FoodEntry]) -> Totals:
    # fsum is exact, so the totals do not depend on entry order
    return Totals(**{
        field: math.fsum(_as_number(getattr(e, field, 0)) for e in entries)
        for field in MACRO_FIELDS
    })

def estimate_dose(total_carbs: float, ratio: float) -> float:
    if not (math.isfinite(total_carbs) and math.isfinite(ratio)):
        return 0.0
    if total_carbs > 0 and ratio > 0:
        return total_carbs / ratio
    return 0.0

def parse_manual_input(total_grams: Any, carbs_per_100g: Any) -> Tuple[float, float]:
    values = []
    for raw in (total_grams, carbs_per_100g):
        if isinstance(raw, bool):
            raise ValidationError(INVALID_MANUAL_MESSAGE)
        try:
            value = float(raw.strip() if isinstance(raw, str) else raw)
        except (TypeError, ValueError):
            raise ValidationError(INVALID_MANUAL_MESSAGE) from None
        if not math.isfinite(value) or value < 0:
            raise ValidationError(INVALID_MANUAL_MESSAGE)
        values.append(value)
    return values[0], values[1]

# --------------------- Rendered values ----------------------
def format_grams(value: float) -> str:
    return f"{value:.1f}g"

def format_calories(value: float) -> str:
    return f"{value:.0f}"

def format_units(value: float) -> str:
    return f"{value:.1f}"

def _render_macros(item, show_details: bool) -> dict:
    out = {"carbohydrates": format_grams(item.carbohydrates)}
    if show_details:
        out["protein"] = format_grams(item.protein)
        out["fat"] = format_grams(item.fat)
        out["calories"] = format_calories(item.calories)
    return out

# =========================
# Image transport
# =========================
def encode_image(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")

def decode_image(text: str) -> bytes:
    # tolerate "data:image/png;base64,...." as produced by FileReader
    if text.startswith("data:") and "," in text:
        text = text.split(",", 1)[1]
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Image payload is not valid base64: {e}") from None

def to_data_url(mime_type: str, payload: str) -> str:
    return f"data:{mime_type};base64,{payload}"

def detect_mime_type(data: bytes, fallback: Optional[str] = None) -> str:
    try:
        with Image.open(io.BytesIO(data)) as img:
            mime = Image.MIME.get(img.format or "")
    except (UnidentifiedImageError, OSError):
        mime = None
    if mime:
        return mime
    if fallback and fallback.startswith("image/"):
        return fallback
    return DEFAULT_MIME_TYPE

# =========================
# Analysis gateway
# =========================
def _number_field(description: str) -> types.Schema:
    return types.Schema(type=types.Type.NUMBER, description=description)

ANALYSIS_SCHEMA = types.Schema(
    type=types.Type.ARRAY,
    items=types.Schema(
        type=types.Type.OBJECT,
        properties={
            "foodName": types.Schema(type=types.Type.STRING, description="Name of the food item."),
            "size": types.Schema(
                type=types.Type.STRING,
                description='Estimated size or portion of the food item (e.g., "1 medium apple", "1 cup of rice").',
            ),
            "carbohydrates": _number_field("Estimated carbohydrates in grams."),
            "protein": _number_field("Estimated protein in grams."),
            "fat": _number_field("Estimated fat in grams."),
            "calories": _number_field("Estimated total calories."),
        },
        required=["foodName", "size", "carbohydrates", "protein", "fat", "calories"],
    ),
)

def make_client(api_key: Optional[str]) -> genai.Client:
    if not api_key:
        raise ConfigurationError("GEMINI_API_KEY environment variable not set")
    return genai.Client(api_key=api_key)

class AnalysisGateway:
    """
    One outbound call per analyze(); no queue, no retries.
    The client is injected so tests can hand in a mock.
    """
    def __init__(self, client: genai.Client, model: str = GEMINI_MODEL):
        self.client = client
        self.model = model

    def build_contents(self, image_b64: str, mime_type: str) -> list:
        image_part = types.Part.from_bytes(data=decode_image(image_b64), mime_type=mime_type)
        text_part = types.Part.from_text(text=ANALYSIS_PROMPT)
        return [types.Content(role="user", parts=[text_part, image_part])]

    def build_config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=ANALYSIS_SCHEMA,
        )

    async def analyze(self, image_b64: str, mime_type: str = DEFAULT_MIME_TYPE) -> List[FoodEntry]:
        log.info("analyzing image (%s, %d base64 chars) with %s", mime_type, len(image_b64), self.model)
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=self.build_contents(image_b64, mime_type),
                config=self.build_config(),
            )
            text = (response.text or "").strip()
            if not text:
                log.info("provider returned no text; no food identified")
                return []
            parsed = json.loads(text)
            if not isinstance(parsed, list):
                raise ValueError(f"expected a JSON array, got {type(parsed).__name__}")
        except Exception as e:
            log.warning("image analysis failed: %s", e)
            raise AnalysisError(f"Failed to analyze image: {e}") from e
        entries = from_analysis(parsed)
        log.info("provider identified %d food item(s)", len(entries))
        return entries

def gateway_from_env(api_key: Optional[str] = None, model: Optional[str] = None) -> AnalysisGateway:
    key = api_key if api_key is not None else API_KEY
    return AnalysisGateway(make_client(key), model=model or GEMINI_MODEL)

# =========================
# Session view state
# =========================
class View(str, Enum):
    INPUT = "input"
    CONFIRM_IMAGE = "confirm_image"
    LOADING = "loading"
    RESULTS = "results"

@dataclass(frozen=True)
class PendingImage:
    data: str            # base64, no data-URI prefix
    mime_type: str = DEFAULT_MIME_TYPE
    filename: str = ""

    @property
    def data_url(self) -> str:
        return to_data_url(self.mime_type, self.data)

class SessionController:
    """
    Input -> ConfirmImage -> Loading -> Results, plus Results -> Input (reset),
    ConfirmImage -> Input (change image) and Input -> Results (manual entry).
    Totals and dose are always derived from the current entries and ratio.
    """

    def __init__(self):
        self._cycle = 0
        self.reset()

    # ---- derived ----
    @property
    def totals(self) -> Totals:
        return aggregate(self.entries or ())

    @property
    def dose(self) -> float:
        return estimate_dose(self.totals.carbohydrates, self.ratio)

    @property
    def can_toggle_details(self) -> bool:
        return self.view is View.RESULTS and bool(self.entries) and not self.is_manual

    # ---- transitions ----
    def reset(self) -> None:
        self._cycle += 1
        self.view = View.INPUT
        self.pending_image: Optional[PendingImage] = None
        self.entries: Optional[Tuple[FoodEntry, ...]] = None
        self.error: Optional[str] = None
        self.details_visible = False
        self.is_manual = False
        self.ratio = DEFAULT_RATIO

    def _require(self, *views: View) -> None:
        if self.view not in views:
            log.debug("rejected action in view %s", self.view.value)
            if self.view is View.LOADING:
                raise StateError("Analysis already in progress.")
            raise StateError(f"Action not available while in '{self.view.value}' view.")

    def select_image(self, image: PendingImage) -> None:
        self._require(View.INPUT)
        self.pending_image = image
        self.error = None
        self.view = View.CONFIRM_IMAGE

    def change_image(self) -> None:
        self._require(View.CONFIRM_IMAGE)
        self.pending_image = None
        self.view = View.INPUT

    def submit_manual(self, total_grams: Any, carbs_per_100g: Any) -> None:
        self._require(View.INPUT)
        try:
            grams, carbs = parse_manual_input(total_grams, carbs_per_100g)
        except ValidationError as e:
            self.error = str(e)
            raise
        self.error = None
        self.pending_image = None
        self.entries = (from_manual(grams, carbs),)
        self.is_manual = True
        self.details_visible = False
        self.view = View.RESULTS

    async def analyze(self, gateway) -> None:
        if self.view is View.INPUT and self.pending_image is None:
            raise StateError(NO_IMAGE_MESSAGE)
        self._require(View.CONFIRM_IMAGE)
        image = self.pending_image
        self._cycle += 1
        cycle = self._cycle
        self.view = View.LOADING
        self.error = None
        self.entries = None
        error = None
        try:
            entries = await gateway.analyze(image.data, image.mime_type)
        except AnalysisError as e:
            error = str(e)
            entries = []
        except Exception:
            log.exception("unexpected failure from analysis gateway")
            error = UNEXPECTED_ANALYSIS_MESSAGE
            entries = []
        # reset (or a newer cycle) while waiting: this result belongs to nobody
        if self.view is not View.LOADING or self._cycle != cycle:
            log.info("discarding analysis result from an abandoned session")
            return
        self.error = error
        self.entries = tuple(entries)
        self.is_manual = False
        self.details_visible = False
        self.view = View.RESULTS

    def toggle_details(self) -> bool:
        self._require(View.RESULTS)
        self.details_visible = (not self.details_visible) if self.can_toggle_details else False
        return self.details_visible

    def set_ratio(self, value: Any) -> float:
        try:
            ratio = float(value)
        except (TypeError, ValueError):
            raise ValidationError("Ratio must be a number.") from None
        if not math.isfinite(ratio) or not RATIO_MIN <= ratio <= RATIO_MAX:
            raise ValidationError(f"Ratio must be between {RATIO_MIN:g} and {RATIO_MAX:g}.")
        self.ratio = ratio
        return ratio

    # ---- rendering ----
    def render(self) -> dict:
        show = self.details_visible and self.can_toggle_details
        entries = self.entries or ()
        view = {
            "view": self.view.value,
            "ratio": self.ratio,
            "details_visible": show,
            "can_toggle_details": self.can_toggle_details,
            "is_manual": self.is_manual,
            "error": self.error,
            "message": None,
            "image": self.pending_image.data_url if self.pending_image else None,
            "entries": [],
            "totals": None,
            "dose": None,
        }
        if self.view is not View.RESULTS:
            return view
        if not entries:
            if not self.error:
                view["message"] = NO_FOOD_MESSAGE
            return view
        view["entries"] = [
            {"name": e.name, "portion": e.portion_description, **_render_macros(e, show)}
            for e in entries
        ]
        view["totals"] = _render_macros(self.totals, show)
        view["dose"] = {"units": format_units(self.dose), "disclaimer": DISCLAIMER}
        return view

# ========= Port + auto-open helpers =========
def _get_free_port(preferred=8000):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind(("127.0.0.1", preferred))
            return preferred
        except OSError:
            pass
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]

# =========================
# App
# =========================
CONTROLLER = SessionController()
GATEWAY: Optional[AnalysisGateway] = None
CONFIG_ERROR: Optional[str] = None

@asynccontextmanager
async def lifespan(app: FastAPI):
    # ---- startup ----
    global GATEWAY, CONFIG_ERROR
    if GATEWAY is None:
        try:
            GATEWAY = gateway_from_env()
        except ConfigurationError as e:
            CONFIG_ERROR = str(e)
            log.error("configuration error: %s; photo analysis disabled, manual calculator still available", e)
    log.info("model=%s analysis_available=%s", GEMINI_MODEL, GATEWAY is not None)
    if OPEN_BROWSER:
        url = f"http://127.0.0.1:{PORT}"
        Timer(0.4, lambda: webbrowser.open(url, new=1, autoraise=True)).start()
    yield
    # ---- shutdown ----
    return

app = FastAPI(
    title="Carb Vision API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

def _state(status_code: int = 200) -> JSONResponse:
    view = CONTROLLER.render()
    view["analysis_available"] = GATEWAY is not None
    return JSONResponse(view, status_code=status_code)

def _conflict(e: StateError) -> JSONResponse:
    body = CONTROLLER.render()
    body["analysis_available"] = GATEWAY is not None
    body["detail"] = str(e)
    return JSONResponse(body, status_code=409)

class ManualInput(BaseModel):
    total_grams: Union[float, str, None] = None
    carbs_per_100g: Union[float, str, None] = None

class RatioInput(BaseModel):
    ratio: Union[float, str, None] = None

# ----------------------------------------------------------------------
@app.get("/", response_class=HTMLResponse)
def index_page():
    return HTMLResponse(INDEX_HTML)

@app.get("/info")
def info():
    return {
        "ok": True,
        "model": GEMINI_MODEL,
        "analysis_available": GATEWAY is not None,
        "ratio": {"min": RATIO_MIN, "max": RATIO_MAX, "step": RATIO_STEP, "default": DEFAULT_RATIO},
    }

@app.get("/favicon.ico")
def favicon_ico():
    return Response(status_code=204)

@app.get("/state")
def state():
    return _state()

@app.post("/image")
async def select_image(
    image: Optional[UploadFile] = File(None),
    file: Optional[UploadFile] = File(None),
):
    up = image or file
    if up is None:
        raise HTTPException(status_code=415, detail="Please upload an image file.")
    data = await up.read()
    if not data:
        raise HTTPException(status_code=415, detail="Please upload an image file.")
    pending = PendingImage(
        data=encode_image(data),
        mime_type=detect_mime_type(data, up.content_type),
        filename=up.filename or "",
    )
    try:
        CONTROLLER.select_image(pending)
    except StateError as e:
        return _conflict(e)
    return _state()

@app.post("/image/clear")
def clear_image():
    try:
        CONTROLLER.change_image()
    except StateError as e:
        return _conflict(e)
    return _state()

# ------------------------- Analyze --------------------------
@app.post("/analyze")
async def analyze():
    if GATEWAY is None:
        raise HTTPException(status_code=503, detail=CONFIG_ERROR or "Image analysis is not configured.")
    try:
        await CONTROLLER.analyze(GATEWAY)
    except StateError as e:
        return _conflict(e)
    return _state()

@app.post("/manual")
def manual(body: ManualInput):
    try:
        CONTROLLER.submit_manual(body.total_grams, body.carbs_per_100g)
    except ValidationError:
        return _state(status_code=422)
    except StateError as e:
        return _conflict(e)
    return _state()

@app.post("/ratio")
def ratio(body: RatioInput):
    try:
        CONTROLLER.set_ratio(body.ratio)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _state()

@app.post("/details")
def details():
    try:
        CONTROLLER.toggle_details()
    except StateError as e:
        return _conflict(e)
    return _state()

@app.post("/reset")
def reset():
    CONTROLLER.reset()
    return _state()

# =========================
# Page
# =========================
INDEX_HTML = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>Carb Vision AI</title>
  <style>
    :root{
      --bg: #0b0e14;
      --card: #111827;
      --text: #e5e7eb;
      --muted: #9ca3af;
      --primary: #10b981;
      --primary-press: #059669;
      --ring: rgba(16,185,129,.35);
      --border: #1f2937;
      --danger: #f87171;
      --warn-bg: #3b2f0b;
    }
    *{ box-sizing:border-box; }
    html,body{
      margin:0; height:100%; background:var(--bg); color:var(--text);
      font:16px/1.5 system-ui, -apple-system, Segoe UI, Roboto, "Helvetica Neue", Arial, sans-serif;
    }
    .container{ max-width:900px; padding:1.25rem; margin-inline:auto; }
    .site-header{ padding:2rem 0 1rem; border-bottom:1px solid var(--border); }
    .site-header h1{ margin:0 0 .5rem; font-size:2rem; }
    .site-header h1 span{ color:var(--primary); }
    .card{
      background:var(--card); border:1px solid var(--border); border-radius:1rem;
      padding:1.25rem; margin:1rem 0; box-shadow:0 10px 30px rgba(0,0,0,.25);
    }
    .card h2{ margin:.25rem 0 1rem; font-size:1.25rem; }
    .drop-area{
      display:grid; place-items:center; min-height:200px;
      border:2px dashed #334155; border-radius:1rem; outline:none;
      transition:border-color .2s, box-shadow .2s;
    }
    .drop-area:focus, .drop-area:hover, .drop-area.dragover{ border-color:var(--primary); box-shadow:0 0 0 4px var(--ring); }
    .muted{ color:var(--muted); margin:.25rem 0; }
    .or{ text-align:center; color:var(--muted); font-weight:600; margin:1.25rem 0; }
    .btn{
      display:inline-block; padding:.6rem 1rem; border-radius:.8rem;
      border:1px solid transparent; background:#222; color:var(--text); cursor:pointer;
    }
    .btn:disabled{ opacity:.5; cursor:not-allowed; }
    .btn-primary{ background:var(--primary); }
    .btn-primary:active{ background:var(--primary-press); }
    .btn-secondary{ background:transparent; border-color:#334155; }
    .btn-link{ background:none; border:none; color:var(--primary); cursor:pointer; font-weight:600; }
    .row{ display:flex; gap:.75rem; flex-wrap:wrap; align-items:center; }
    input[type=number]{ padding:.55rem .75rem; border-radius:.6rem; border:1px solid #334155; background:#0f172a; color:var(--text); }
    input[type=range]{ width:100%; accent-color:var(--primary); }
    .preview img{ max-width:320px; max-height:320px; border-radius:.75rem; border:1px solid var(--border); display:block; }
    .error{ color:var(--danger); background:rgba(248,113,113,.08); padding:.75rem; border-radius:.6rem; }
    .notice{ color:var(--muted); background:#0f172a; padding:.75rem; border-radius:.6rem; }
    .totals, .item, .dose{ background:#0f172a; border:1px solid var(--border); border-radius:.8rem; padding:.75rem; margin:.75rem 0; }
    .spread{ display:flex; justify-content:space-between; align-items:flex-start; gap:1rem; }
    .big{ font-size:1.5rem; font-weight:700; }
    .grid3{ display:grid; grid-template-columns:repeat(3,1fr); gap:.5rem; text-align:center; margin-top:.5rem; border-top:1px solid var(--border); padding-top:.5rem; }
    .label{ color:var(--muted); font-size:.75rem; text-transform:uppercase; }
    .disclaimer{ font-size:.8rem; color:var(--muted); background:var(--warn-bg); border-radius:.5rem; padding:.5rem; margin-top:.5rem; }
    .site-footer{ border-top:1px solid var(--border); margin-top:1.5rem; padding:1rem 0 2rem; color:var(--muted); }
  </style>
</head>
<body>
  <header class="site-header">
    <div class="container">
      <h1>Carb Vision <span>AI</span></h1>
      <p class="muted">Upload a meal photo for an AI nutrition estimate, or use the manual carb calculator.</p>
    </div>
  </header>

  <main class="container">
    <section class="card" id="input-view" hidden>
      <h2>Upload a Food Image</h2>
      <div id="drop-area" class="drop-area" tabindex="0" role="button" aria-label="Drop image here or press Enter to choose a file">
        <div style="text-align:center">
          <p><strong>Drag &amp; drop</strong> an image here</p>
          <p class="muted">or</p>
          <label class="btn"><input id="file-input" type="file" accept="image/*" hidden />Choose image</label>
        </div>
      </div>
      <p id="no-analysis" class="muted" hidden>Photo analysis is not configured on this server; the manual calculator still works.</p>
      <div class="or">OR</div>
      <h2>Manual Carb Calculator</h2>
      <form id="manual-form" class="row">
        <input id="total-grams" type="number" step="any" min="0" placeholder="Total Grams (e.g., 250)" required />
        <input id="carbs-per-100g" type="number" step="any" min="0" placeholder="Carbs per 100g (e.g., 15)" required />
        <button class="btn btn-primary" type="submit">Calculate &amp; View Results</button>
      </form>
    </section>

    <section class="card" id="confirm-view" hidden>
      <h2>Confirm Your Image</h2>
      <div class="preview"><img id="confirm-img" alt="Selected food" /></div>
      <div class="row" style="margin-top:1rem">
        <button id="analyze-btn" class="btn btn-primary" type="button">Analyze Nutrition</button>
        <button id="change-btn" class="btn btn-secondary" type="button">Change Image</button>
      </div>
      <p id="loading-note" class="muted" hidden>Analyzing your meal... this may take a moment.</p>
    </section>

    <section class="card" id="results-view" hidden>
      <div class="spread">
        <h2>Analysis Results</h2>
        <button id="details-btn" class="btn-link" type="button" hidden>Show Details</button>
      </div>
      <div class="preview" id="results-preview" hidden><img id="results-img" alt="Your food" /></div>
      <div id="results-body"></div>
      <div class="row" style="justify-content:center; margin-top:1rem">
        <button id="reset-btn" class="btn btn-secondary" type="button">Start Over</button>
      </div>
    </section>

    <div id="inline-error" class="error" hidden></div>
  </main>

  <footer class="site-footer">
    <div class="container"><small>&copy; <span id="year"></span> Carb Vision AI. Powered by Google Gemini. Estimates only.</small></div>
  </footer>

  <script>
  const $ = id => document.getElementById(id);
  let state = null;

  async function api(path, opts = {}){
    const res = await fetch(path, Object.assign({ method: "POST" }, opts));
    const body = await res.json().catch(() => ({}));
    if(!res.ok && !("view" in body)) throw new Error(body.detail || `Server responded ${res.status}`);
    return body;
  }
  const postJson = (path, data) => api(path, { headers: { "Content-Type": "application/json" }, body: JSON.stringify(data) });

  function esc(s){ const d = document.createElement("div"); d.textContent = s ?? ""; return d.innerHTML; }

  function macroGrid(m){
    return `<div class="grid3">
      <div><div class="label">Protein</div><strong>${esc(m.protein)}</strong></div>
      <div><div class="label">Fat</div><strong>${esc(m.fat)}</strong></div>
      <div><div class="label">Calories</div><strong>${esc(m.calories)}</strong></div></div>`;
  }

  function renderResults(s){
    let html = "";
    if(s.error) html += `<p class="error">${esc(s.error)}</p>`;
    if(!s.entries.length){
      if(s.message) html += `<p class="notice">${esc(s.message)}</p>`;
      return html;
    }
    html += `<div class="totals"><div class="spread"><strong>Total Carbs</strong><span class="big">${esc(s.totals.carbohydrates)}</span></div>
      ${s.details_visible ? macroGrid(s.totals) : ""}</div>`;
    html += `<div class="dose"><strong>Insulin Dose Estimator</strong>
      <label class="muted" for="cir">Carb-to-Insulin Ratio (1:<span id="cir-val">${s.ratio}</span>)</label>
      <input id="cir" type="range" min="1" max="50" step="0.5" value="${s.ratio}" />
      <p style="text-align:center"><span class="label">Estimated Insulin Dose</span><br/><span class="big">${esc(s.dose.units)}</span> units</p>
      <p class="disclaimer"><strong>Disclaimer:</strong> ${esc(s.dose.disclaimer)}</p></div>`;
    for(const e of s.entries){
      html += `<div class="item"><div class="spread"><div><strong>${esc(e.name)}</strong><div class="muted">${esc(e.portion)}</div></div>
        <div style="text-align:right"><span class="big">${esc(e.carbohydrates)}</span><div class="label">Carbs</div></div></div>
        ${s.details_visible ? macroGrid(e) : ""}</div>`;
    }
    return html;
  }

  function render(s){
    state = s;
    const v = s.view;
    $("input-view").hidden = v !== "input";
    $("confirm-view").hidden = !(v === "confirm_image" || v === "loading");
    $("results-view").hidden = v !== "results";
    $("no-analysis").hidden = s.analysis_available;
    $("analyze-btn").disabled = v === "loading" || !s.analysis_available;
    $("change-btn").disabled = v === "loading";
    $("loading-note").hidden = v !== "loading";
    $("analyze-btn").textContent = v === "loading" ? "Analyzing…" : "Analyze Nutrition";
    if(s.image){ $("confirm-img").src = s.image; $("results-img").src = s.image; }
    $("results-preview").hidden = !(v === "results" && s.image);
    $("details-btn").hidden = !s.can_toggle_details;
    $("details-btn").textContent = (s.details_visible ? "Hide" : "Show") + " Details";
    const inlineErr = v === "input" ? s.error : null;
    $("inline-error").hidden = !inlineErr;
    $("inline-error").textContent = inlineErr || "";
    if(v === "results"){
      $("results-body").innerHTML = renderResults(s);
      const cir = $("cir");
      if(cir) cir.addEventListener("input", e => {
        $("cir-val").textContent = e.target.value;
        postJson("/ratio", { ratio: parseFloat(e.target.value) }).then(render).catch(showError);
      });
    }
  }

  function showError(err){
    console.error(err);
    $("inline-error").hidden = false;
    $("inline-error").textContent = err?.message || "Request failed";
  }

  async function selectFile(file){
    if(!file) return;
    const fd = new FormData();
    fd.append("image", file);
    try{ render(await api("/image", { body: fd })); } catch(err){ showError(err); }
  }

  $("file-input").addEventListener("change", () => selectFile($("file-input").files?.[0]));
  const dropArea = $("drop-area");
  ["dragenter","dragover"].forEach(evt =>
    dropArea.addEventListener(evt, e => { e.preventDefault(); dropArea.classList.add("dragover"); })
  );
  ["dragleave","drop"].forEach(evt =>
    dropArea.addEventListener(evt, e => { e.preventDefault(); dropArea.classList.remove("dragover"); })
  );
  dropArea.addEventListener("drop", e => selectFile(e.dataTransfer?.files?.[0]));
  dropArea.addEventListener("keydown", e => { if(e.key === "Enter" || e.key === " ") $("file-input").click(); });

  $("analyze-btn").addEventListener("click", async () => {
    if(!state || state.view !== "confirm_image") return;
    render(Object.assign({}, state, { view: "loading" }));
    try{ render(await api("/analyze")); } catch(err){ showError(err); render(await api("/state", { method: "GET" })); }
  });
  $("change-btn").addEventListener("click", async () => {
    $("file-input").value = "";
    try{ render(await api("/image/clear")); } catch(err){ showError(err); }
  });
  $("manual-form").addEventListener("submit", async e => {
    e.preventDefault();
    try{
      render(await postJson("/manual", { total_grams: $("total-grams").value, carbs_per_100g: $("carbs-per-100g").value }));
    } catch(err){ showError(err); }
  });
  $("details-btn").addEventListener("click", async () => {
    try{ render(await api("/details")); } catch(err){ showError(err); }
  });
  $("reset-btn").addEventListener("click", async () => {
    $("file-input").value = "";
    $("manual-form").reset();
    try{ render(await api("/reset")); } catch(err){ showError(err); }
  });

  $("year").textContent = new Date().getFullYear();
  api("/state", { method: "GET" }).then(render).catch(showError);
  </script>
</body>
</html>
"""

# ========= Run =========
def main(argv=None):
    global GATEWAY, PORT, OPEN_BROWSER
    parser = argparse.ArgumentParser(description="Carb Vision: photo carb estimate + insulin dose calculator")
    parser.add_argument("--require-key", action="store_true",
                        help="exit instead of starting without a Gemini API key")
    parser.add_argument("--no-browser", action="store_true", help="do not open a browser tab")
    args = parser.parse_args(argv)
    logging.basicConfig(level=LOG_LEVEL.upper(), format="%(levelname)s:     %(name)s - %(message)s")
    if args.require_key:
        try:
            GATEWAY = gateway_from_env()
        except ConfigurationError as e:
            parser.exit(1, f"[config] {e}\n")
    if args.no_browser:
        OPEN_BROWSER = False
    PORT = _get_free_port(PORT)
    uvicorn.run(app, host="127.0.0.1", port=PORT, log_level=LOG_LEVEL)

if __name__ == "__main__":
    main()
