import logging

import requests

logger = logging.getLogger(__name__)


class Translator:
    """Server-side client for the machine translation service.

    The API key never leaves the server. Any failure returns the original
    text with ``translated`` set to False so the page keeps showing it.
    """

    def __init__(self, api_url, api_key=None, timeout=10, session=None):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self.http = session or requests.Session()

    def translate(self, text, target_language, source_language=None):
        result = {'translated_text': text, 'translated': False}
        if not text or not text.strip():
            return result
        if not self.api_url:
            logger.warning('Translation service not configured')
            result['warning'] = 'translation service not configured'
            return result
        payload = {'text': text, 'targetLanguage': target_language}
        if source_language:
            payload['sourceLanguage'] = source_language
        headers = {'Accept': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f'Bearer {self.api_key}'
        try:
            resp = self.http.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
            translated = (resp.json() or {}).get('translatedText')
        except (requests.RequestException, ValueError) as e:
            logger.warning('Translation to %s failed: %s', target_language, e)
            result['warning'] = 'translation failed'
            return result
        if not translated:
            logger.warning('Translation to %s returned no text', target_language)
            result['warning'] = 'translation failed'
            return result
        return {'translated_text': translated, 'translated': True}
