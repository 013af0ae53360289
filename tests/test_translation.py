from unittest import mock

import requests

from translation import Translator


def response(status=200, body=None):
    resp = mock.Mock()
    resp.status_code = status
    resp.json.return_value = body
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f'{status} error')
    return resp


def test_translates_with_server_side_key():
    http = mock.Mock()
    http.post.return_value = response(body={'translatedText': 'Hola'})
    result = Translator('https://translate.example.com/v1', 'k3y', timeout=5, session=http).translate(
        'Hello', 'es', 'en')
    assert result == {'translated_text': 'Hola', 'translated': True}
    args, kwargs = http.post.call_args
    assert args[0] == 'https://translate.example.com/v1'
    assert kwargs['json'] == {'text': 'Hello', 'targetLanguage': 'es', 'sourceLanguage': 'en'}
    assert kwargs['headers']['Authorization'] == 'Bearer k3y'
    assert kwargs['timeout'] == 5


def test_http_failure_returns_original_text():
    http = mock.Mock()
    http.post.return_value = response(status=502)
    result = Translator('https://translate.example.com/v1', session=http).translate('Hello', 'fr')
    assert result['translated_text'] == 'Hello'
    assert result['translated'] is False
    assert result['warning'] == 'translation failed'


def test_network_error_and_empty_answer():
    http = mock.Mock()
    http.post.side_effect = requests.ConnectionError('down')
    translator = Translator('https://translate.example.com/v1', session=http)
    assert translator.translate('Hello', 'fr')['translated'] is False

    http.post.side_effect = None
    http.post.return_value = response(body={})
    assert translator.translate('Hello', 'fr') == {
        'translated_text': 'Hello', 'translated': False, 'warning': 'translation failed'}


def test_not_configured_or_blank_text():
    http = mock.Mock()
    translator = Translator(None, session=http)
    assert translator.translate('Hello', 'de')['warning'] == 'translation service not configured'
    assert Translator('https://translate.example.com/v1', session=http).translate('   ', 'de') == {
        'translated_text': '   ', 'translated': False}
    http.post.assert_not_called()
