"""
Utility for building standardized API Gateway responses.
"""
import base64
import json
from typing import Any, Dict, Mapping, Optional

TEXT_CONTENT_TYPES = (
    'text/',
    'application/json',
    'application/xml',
    'application/javascript',
)

JSON_HEADERS = {'content-type': 'application/json'}


def success_response(
    status_code: int = 200,
    body: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Build success response.

    Args:
        status_code: HTTP status code
        body: Response body dict

    Returns:
        API Gateway response dict
    """
    return {
        'statusCode': status_code,
        'headers': dict(JSON_HEADERS),
        'body': json.dumps(body or {}),
        'isBase64Encoded': False
    }


def error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Build error response.

    Args:
        status_code: HTTP status code
        error_code: Application error code
        message: Human-readable error message
        details: Optional additional error details

    Returns:
        API Gateway response dict
    """
    body = {
        'success': False,
        'error': error_code,
        'message': message
    }

    if details:
        body['details'] = details

    return {
        'statusCode': status_code,
        'headers': dict(JSON_HEADERS),
        'body': json.dumps(body),
        'isBase64Encoded': False
    }


def should_base64_encode(content_type: Optional[str]) -> bool:
    """
    Decide whether a body of the given content type is binary.

    Text, JSON, XML and JavaScript bodies are passed as strings; everything
    else, including a missing content type, is base64-encoded.
    """
    if not content_type:
        return True
    lowered = content_type.lower()
    return not any(lowered.startswith(prefix) for prefix in TEXT_CONTENT_TYPES)


def body_response(
    status_code: int,
    headers: Mapping[str, str],
    body: bytes
) -> Dict[str, Any]:
    """
    Build a gateway response from raw body bytes.

    Args:
        status_code: HTTP status code
        headers: Response headers (lower-case names expected)
        body: Raw response body

    Returns:
        API Gateway response dict, body base64-encoded when binary
    """
    normalized = {name.lower(): value for name, value in headers.items()}
    if should_base64_encode(normalized.get('content-type')):
        encoded = base64.b64encode(body).decode('ascii')
        return {
            'statusCode': status_code,
            'headers': normalized,
            'body': encoded,
            'isBase64Encoded': True
        }
    return {
        'statusCode': status_code,
        'headers': normalized,
        'body': body.decode('utf-8', errors='replace'),
        'isBase64Encoded': False
    }


def redirect_response(status_code: int, location: str, headers: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Build redirect response.

    Args:
        status_code: 3xx status code
        location: Redirect target
        headers: Additional response headers

    Returns:
        API Gateway response dict with an empty body
    """
    merged = {name.lower(): value for name, value in (headers or {}).items()}
    merged['location'] = location
    return {
        'statusCode': status_code,
        'headers': merged,
        'body': '',
        'isBase64Encoded': False
    }
