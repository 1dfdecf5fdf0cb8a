import logging
import uuid

from flask import Blueprint, Response, current_app, jsonify, request

from error_handler import ErrorKind, TranscriptError, http_status_for, user_message
from logging_setup import set_request_ctx
from models import extract_video_id
from transcript_formats import FORMATS, file_extension, format_transcript, mime_type
from transcript_service import get_transcript_service

transcript_routes = Blueprint("transcript_routes", __name__)


def _service():
    """Service injected by create_app(), else the process-wide default"""
    return current_app.config.get("TRANSCRIPT_SERVICE") or get_transcript_service()


def _error_response(error: TranscriptError, video_id: str, language_code=None):
    return jsonify({
        "error": user_message(error, video_id, language_code),
        "kind": error.kind.value,
    }), http_status_for(error.kind)


@transcript_routes.route("/api/transcript", methods=["GET"])
def get_transcript():
    """Fetch a transcript for ?videoId= (id or URL), optional &lang= and &format="""
    raw_video = (request.args.get("videoId") or request.args.get("url") or "").strip()
    language_code = (request.args.get("lang") or "").strip() or None
    fmt = (request.args.get("format") or "json").strip().lower()

    if not raw_video:
        return jsonify({"error": "videoId is required", "kind": ErrorKind.INVALID_INPUT.value}), 400

    if fmt not in FORMATS:
        return jsonify({
            "error": f"Unsupported format '{fmt}'. Use one of: {', '.join(FORMATS)}",
            "kind": ErrorKind.INVALID_INPUT.value,
        }), 400

    video_id = extract_video_id(raw_video)
    if not video_id:
        error = TranscriptError(ErrorKind.INVALID_INPUT, "Invalid YouTube video ID",
                                signal=f"videoId={raw_video[:40]!r}")
        return _error_response(error, raw_video[:40], language_code)

    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
    set_request_ctx(request_id=request_id)

    try:
        transcript = _service().fetch_transcript(video_id, language_code)
    except TranscriptError as e:
        logging.warning(f"Transcript request failed: video_id={video_id} kind={e.kind.value} detail={e}")
        return _error_response(e, video_id, language_code)

    if fmt == "json":
        segments = [segment.to_dict() for segment in transcript.segments]
        return jsonify({
            "videoId": transcript.video_id,
            "language": transcript.source_language,
            "source": transcript.source,
            "transcript": segments,
            "totalItems": len(segments),
        })

    body = format_transcript(transcript, fmt)
    filename = f"transcript-{video_id}.{file_extension(fmt)}"
    return Response(
        body,
        mimetype=mime_type(fmt),
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
