"""Page-side JavaScript snippets evaluated by the step interpreter."""

from __future__ import annotations

import json
from typing import Sequence

NO_ELEMENT_FOUND = "no element found"


def selector_present(selector: str) -> str:
    return f"!!document.querySelector({json.dumps(selector)})"


def click_first(selectors: Sequence[str]) -> str:
    return f"""
        (() => {{
            const selectors = {json.dumps(list(selectors))};
            for (const sel of selectors) {{
                const el = document.querySelector(sel);
                if (el) {{
                    el.scrollIntoView({{ behavior: 'smooth', block: 'center' }});
                    el.click();
                    return 'clicked: ' + sel;
                }}
            }}
            return '{NO_ELEMENT_FOUND}: ' + selectors.join(', ');
        }})()
    """


def type_into_first(selectors: Sequence[str], text: str, *, submit: bool) -> str:
    """Fill the first matching field one character at a time.

    Each character fires an ``input`` event so framework-bound inputs pick
    up the change. With ``submit`` the snippet also presses Enter and submits
    the surrounding form.
    """

    return f"""
        (() => {{
            const selectors = {json.dumps(list(selectors))};
            const text = {json.dumps(text)};
            let el = null;
            let used = null;
            for (const sel of selectors) {{
                el = document.querySelector(sel);
                if (el) {{ used = sel; break; }}
            }}
            if (!el) {{
                return '{NO_ELEMENT_FOUND}: ' + selectors.join(', ');
            }}
            el.scrollIntoView({{ behavior: 'smooth', block: 'center' }});
            el.focus();
            el.dispatchEvent(new Event('focus', {{ bubbles: true }}));
            const proto = Object.getPrototypeOf(el);
            const descriptor = Object.getOwnPropertyDescriptor(proto, 'value');
            const setValue = (v) => descriptor && descriptor.set ? descriptor.set.call(el, v) : (el.value = v);
            setValue('');
            for (const ch of text) {{
                setValue(el.value + ch);
                el.dispatchEvent(new InputEvent('input', {{ bubbles: true, data: ch, inputType: 'insertText' }}));
            }}
            el.dispatchEvent(new Event('change', {{ bubbles: true }}));
            if ({json.dumps(submit)}) {{
                for (const type of ['keydown', 'keypress', 'keyup']) {{
                    el.dispatchEvent(new KeyboardEvent(type, {{
                        key: 'Enter', code: 'Enter', keyCode: 13, which: 13, bubbles: true,
                    }}));
                }}
                const form = el.form || el.closest('form');
                if (form) {{
                    if (typeof form.requestSubmit === 'function') {{ form.requestSubmit(); }} else {{ form.submit(); }}
                }}
            }}
            return 'typed ' + String(el.value).length + ' chars into ' + used;
        }})()
    """


def extract_text(selectors: Sequence[str]) -> str:
    return f"""
        (() => {{
            const selectors = {json.dumps(list(selectors))};
            for (const sel of selectors) {{
                const el = document.querySelector(sel);
                if (el) {{
                    return (el.innerText || el.textContent || '').trim();
                }}
            }}
            return '{NO_ELEMENT_FOUND}: ' + selectors.join(', ');
        }})()
    """


def scroll_by(pixels: int) -> str:
    return f"window.scrollBy({{ top: {int(pixels)}, behavior: 'smooth' }})"
