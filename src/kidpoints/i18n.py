"""Internationalisation helpers for KidPoints."""

from __future__ import annotations

from typing import Dict, Mapping, Optional


class Translator:
    """Store translations for short interface strings such as toast titles."""

    def __init__(self, default_locale: str = "en", *, translations: Optional[Mapping[str, Mapping[str, str]]] = None) -> None:
        self.default_locale = default_locale
        self._translations: Dict[str, Dict[str, str]] = {
            "en": {
                "toast.validation": "Please check the form",
                "toast.backend": "Something went wrong",
                "toast.success": "Saved",
                "toast.info": "Heads up",
                "auth.required": "You need to sign in first.",
                "auth.invalid": "Invalid email or password.",
                "auth.locked": "Too many failed attempts. Try again later.",
                "access.denied": "You are not allowed to see that.",
                "points.insufficient": "Not enough points to redeem this reward.",
                "reward.claimed": "This reward has already been redeemed.",
                "form.invalid": "Invalid data.",
            },
            "es": {
                "toast.validation": "Revisa el formulario",
                "toast.backend": "Algo salió mal",
                "toast.success": "Guardado",
                "toast.info": "Aviso",
                "auth.required": "Debes iniciar sesión.",
                "auth.invalid": "Email o contraseña incorrectos.",
                "auth.locked": "Demasiados intentos fallidos. Inténtalo más tarde.",
                "access.denied": "No autorizado.",
                "points.insufficient": "Puntos insuficientes para canjear esta recompensa.",
                "reward.claimed": "Esta recompensa ya ha sido canjeada.",
                "form.invalid": "Datos inválidos.",
            },
        }
        if translations:
            for locale, mapping in translations.items():
                self._translations.setdefault(locale, {}).update(mapping)

    def set_translation(self, locale: str, key: str, value: str) -> None:
        self._translations.setdefault(locale, {})[key] = value

    def translate(self, key: str, *, locale: Optional[str] = None) -> str:
        target_locale = locale or self.default_locale
        language = self._translations.get(target_locale) or self._translations[self.default_locale]
        return language.get(key, key)

    def available_locales(self) -> tuple[str, ...]:
        return tuple(sorted(self._translations))


__all__ = ["Translator"]
