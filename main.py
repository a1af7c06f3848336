import argparse
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from errors import ModelLoadError, PasswordGenError, ValidationError
from markov_chain import describe_model, load_dataset, load_model, save_model, train_model
from password_generator import PasswordGenerator
from schemas import ModelSummary, PasswordResponse, PasswordRestrictions

load_dotenv()

MODEL_PATH = os.getenv("MODEL_PATH", "./model.json")
DATASET_PATH = os.getenv("DATASET_PATH", "./passwords.txt")
MAX_RETRY = int(os.getenv("MAX_RETRY", 5))
DEFAULT_MAX_LENGTH = int(os.getenv("DEFAULT_MAX_LENGTH", 16))
MARKOV_ORDER = int(os.getenv("MARKOV_ORDER", 2))

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def error_status(exc: PasswordGenError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, ModelLoadError):
        return 503
    return 500


def build_generator(model_path: str = MODEL_PATH) -> PasswordGenerator:
    try:
        model = load_model(model_path)
    except ModelLoadError as e:
        # Random passwords are still served; user readable ones report this
        logger.warning("Sequence model unavailable: %s", e)
        return PasswordGenerator(model_error=e, default_max_length=DEFAULT_MAX_LENGTH)
    return PasswordGenerator(model, default_max_length=DEFAULT_MAX_LENGTH)


def create_app(generator: Optional[PasswordGenerator] = None, max_retry: int = MAX_RETRY) -> FastAPI:
    generator = generator or build_generator()

    app = FastAPI(title="Password Generator API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PasswordGenError)
    def handle_error(request: Request, exc: PasswordGenError):
        return JSONResponse(
            status_code=error_status(exc),
            content=PasswordResponse(error=str(exc)).model_dump(),
        )

    @app.get("/")
    def root():
        return {"message": "Password generator service running"}

    @app.get("/model", response_model=ModelSummary)
    def model_summary():
        summary = describe_model(generator.model)
        if generator.model_error is not None:
            summary["error"] = str(generator.model_error)
        return ModelSummary(**summary)

    @app.get("/password-gen", response_model=PasswordResponse)
    def password_gen(
        min_length: int = Query(0, alias="minLength", ge=0),
        max_length: int = Query(0, alias="maxLength", ge=0),
        min_digits: int = Query(0, alias="minDigits", ge=0),
        min_special_chars: int = Query(0, alias="minSpecialChars", ge=0),
        min_letters: int = Query(0, alias="minLetters", ge=0),
        user_readable: bool = Query(False, alias="userReadable"),
        all_upper_case: bool = Query(False, alias="allUpperCase"),
        all_lower_case: bool = Query(False, alias="allLowerCase"),
        prefix: str = Query("", max_length=64, description="Starting text for user readable passwords"),
    ):
        restrictions = PasswordRestrictions(
            min_length=min_length,
            max_length=max_length,
            min_digits=min_digits,
            min_special_chars=min_special_chars,
            min_letters=min_letters,
            user_readable=user_readable,
            all_upper_case=all_upper_case,
            all_lower_case=all_lower_case,
        )
        password = generator.generate_with_retry(restrictions, max_retry, prefix=prefix)
        return PasswordResponse(password=password)

    return app


app = create_app()


def train(dataset_path: str = DATASET_PATH, model_path: str = MODEL_PATH, order: int = MARKOV_ORDER) -> None:
    try:
        lines = load_dataset(dataset_path)
    except OSError as e:
        raise SystemExit(f"Could not read dataset {dataset_path}: {e}")
    try:
        model = train_model(lines, order)
    except PasswordGenError as e:
        raise SystemExit(f"Could not train data: {e}")
    save_model(model, model_path)
    logger.info("Model mean=%.4f std_dev=%.4f", model.mean, model.std_dev)


if __name__ == "__main__":
    import uvicorn

    parser = argparse.ArgumentParser(description="Password generator service")
    parser.add_argument("--train", action="store_true", help="train from dataset before serving")
    parser.add_argument("--dataset", default=DATASET_PATH)
    parser.add_argument("--model", default=MODEL_PATH)
    parser.add_argument("--order", type=int, default=MARKOV_ORDER)
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", 8000)))
    args = parser.parse_args()

    if args.train:
        train(args.dataset, args.model, args.order)
    uvicorn.run(create_app(build_generator(args.model)), host=args.host, port=args.port)
