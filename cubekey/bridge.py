"""Playwright bridge that intercepts WebAuthn calls and delegates to the engine."""

from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from playwright.async_api import BrowserContext, Page, async_playwright

from .errors import UserCancelled
from .physical import PendingStateRequests
from .service import AuthenticatorEngine

LOGGER = logging.getLogger(__name__)


INJECT_SCRIPT = r"""
(() => {
  const toBytes = (buffer) => {
    if (buffer instanceof ArrayBuffer) {
      return Array.from(new Uint8Array(buffer));
    }
    if (ArrayBuffer.isView(buffer)) {
      return Array.from(new Uint8Array(buffer.buffer, buffer.byteOffset, buffer.byteLength));
    }
    throw new Error("Unsupported buffer type");
  };

  const toBuffer = (bytes) => new Uint8Array(bytes).buffer;

  const serializeDescriptors = (items = []) =>
    items.map((item) => ({ type: item.type, id: toBytes(item.id), transports: item.transports ?? [] }));

  const serializeCreationOptions = (options) => ({
    rp: options.rp,
    user: { ...options.user, id: toBytes(options.user.id) },
    challenge: toBytes(options.challenge),
    pubKeyCredParams: options.pubKeyCredParams?.map((param) => ({ type: param.type, alg: param.alg })) ?? [],
    timeout: options.timeout ?? null,
    attestation: options.attestation ?? "none",
    excludeCredentials: serializeDescriptors(options.excludeCredentials ?? []),
  });

  const serializeRequestOptions = (options) => ({
    rpId: options.rpId ?? window.location.hostname,
    challenge: toBytes(options.challenge),
    allowCredentials: serializeDescriptors(options.allowCredentials ?? []),
    timeout: options.timeout ?? null,
    userVerification: options.userVerification ?? "preferred",
  });

  const buildCredential = (payload) => {
    const response = payload.response || {};
    const built = {
      clientDataJSON: toBuffer(response.clientDataJSON),
    };
    if (response.attestationObject) {
      built.attestationObject = toBuffer(response.attestationObject);
      built.getAuthenticatorData = () => toBuffer(response.authenticatorData);
      built.getPublicKey = () => toBuffer(response.publicKey);
      built.getPublicKeyAlgorithm = () => response.publicKeyAlgorithm;
      built.getTransports = () => response.transports ?? [];
    } else {
      built.authenticatorData = toBuffer(response.authenticatorData);
      built.signature = toBuffer(response.signature);
      built.userHandle = response.userHandle ? toBuffer(response.userHandle) : null;
    }
    return {
      id: payload.id,
      rawId: toBuffer(payload.rawId),
      type: payload.type,
      authenticatorAttachment: payload.authenticatorAttachment,
      response: built,
      getClientExtensionResults: () => payload.clientExtensionResults || {},
      toJSON: () => payload,
    };
  };

  const openOverlays = new Set();

  const closeOverlays = () => {
    openOverlays.forEach((overlay) => overlay.remove());
    openOverlays.clear();
  };

  window.__cubekeyAskState = (requestId, prompt) => {
    const overlay = document.createElement("div");
    openOverlays.add(overlay);
    overlay.style.cssText =
      "position:fixed;inset:0;z-index:2147483647;display:flex;align-items:center;" +
      "justify-content:center;background:rgba(0,0,0,.4);font:14px system-ui";
    const box = document.createElement("form");
    box.style.cssText = "background:#fff;padding:16px;border-radius:8px;min-width:320px";
    const label = document.createElement("p");
    label.textContent = prompt;
    const input = document.createElement("input");
    input.style.cssText = "width:100%;font-family:monospace";
    input.autocomplete = "off";
    const ok = document.createElement("button");
    ok.type = "submit";
    ok.textContent = "Continue";
    const cancel = document.createElement("button");
    cancel.type = "button";
    cancel.textContent = "Cancel";
    box.append(label, input, ok, cancel);
    overlay.append(box);
    const finish = (state) => {
      overlay.remove();
      openOverlays.delete(overlay);
      window.__cubekeySubmitState({ requestId, state });
    };
    box.addEventListener("submit", (event) => {
      event.preventDefault();
      finish(input.value.trim() || null);
    });
    cancel.addEventListener("click", () => finish(null));
    document.body.append(overlay);
    input.focus();
  };

  const callBridge = async (binding, payload) => {
    try {
      return await binding(payload);
    } finally {
      // a timed out or failed ceremony leaves its prompt behind
      closeOverlays();
    }
  };

  const wrapNavigator = () => {
    if (!navigator.credentials || navigator.credentials.__cubekeyHooked) {
      return;
    }
    const originalCreate = navigator.credentials.create.bind(navigator.credentials);
    const originalGet = navigator.credentials.get.bind(navigator.credentials);

    navigator.credentials.create = async (options) => {
      if (!options?.publicKey || typeof window.__cubekeyMakeCredential !== "function") {
        return originalCreate(options);
      }
      const result = await callBridge(window.__cubekeyMakeCredential, {
        url: window.location.href,
        publicKey: serializeCreationOptions(options.publicKey),
      });
      if (!result.success) {
        throw new DOMException(result.message || "Registration failed", "NotAllowedError");
      }
      return buildCredential(result.credential);
    };

    navigator.credentials.get = async (options) => {
      if (!options?.publicKey || typeof window.__cubekeyGetAssertion !== "function") {
        return originalGet(options);
      }
      const result = await callBridge(window.__cubekeyGetAssertion, {
        url: window.location.href,
        publicKey: serializeRequestOptions(options.publicKey),
      });
      if (!result.success) {
        if (result.error === "NoCredentialsAvailable") {
          return originalGet(options);
        }
        throw new DOMException(result.message || "Authentication failed", "NotAllowedError");
      }
      return buildCredential(result.credential);
    };

    Object.defineProperty(navigator.credentials, "__cubekeyHooked", { value: true });
    console.info("[cubekey] navigator.credentials hooked");
  };

  wrapNavigator();
})();
"""


class BridgeStateProvider:
    """Asks the calling page for the cube state and waits for its answer."""

    def __init__(self, loop: asyncio.AbstractEventLoop, requests: PendingStateRequests) -> None:
        self.loop = loop
        self.requests = requests
        self._pages: Dict[str, Page] = {}

    def attach(self, request_id: str, page: Page) -> None:
        self._pages[request_id] = page

    def detach(self, request_id: str) -> None:
        self._pages.pop(request_id, None)

    def read_state(self, request_id: str, prompt: str) -> str:
        page = self._pages.get(request_id)
        if page is None:
            raise UserCancelled(f"No page waiting on request {request_id}")
        # registered before prompting so a quick answer is not dropped
        self.requests.expect(request_id)
        try:
            asyncio.run_coroutine_threadsafe(self._ask(page, request_id, prompt), self.loop)
        except RuntimeError:
            self.requests.discard(request_id)
            raise
        return self.requests.read_state(request_id, prompt)

    def cancel_all(self) -> None:
        self.requests.cancel_all()

    async def _ask(self, page: Page, request_id: str, prompt: str) -> None:
        try:
            await page.evaluate(
                "([id, text]) => window.__cubekeyAskState(id, text)", [request_id, prompt]
            )
        except Exception as exc:  # pragma: no cover - page closed or navigated away
            LOGGER.warning("Could not prompt for cube state: %s", exc)
            self.requests.cancel(request_id)


class PlaywrightBridge:
    """Launches Chromium, injects interception scripts, and bridges to the engine."""

    def __init__(
        self,
        engine: AuthenticatorEngine,
        target_url: str,
        *,
        headless: bool = False,
    ) -> None:
        self.engine = engine
        self.target_url = target_url
        self.headless = headless
        self.requests = PendingStateRequests(timeout=engine.settings.state_timeout)
        self.provider: Optional[BridgeStateProvider] = None

    async def run(self) -> None:
        self.provider = BridgeStateProvider(asyncio.get_running_loop(), self.requests)
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=self.headless)
            context = await browser.new_context()
            await self._prepare_context(context)
            page = await context.new_page()
            LOGGER.info("[INFO] Opening %s", self.target_url)
            await page.goto(self.target_url)
            LOGGER.info("[INFO] Cube authenticator bridge active. Press Ctrl+C to exit.")
            try:
                while True:
                    await asyncio.sleep(3600)
            except asyncio.CancelledError:  # pragma: no cover - manual interruption
                LOGGER.info("Bridge cancelled")
            finally:
                self.provider.cancel_all()
                await browser.close()

    async def _prepare_context(self, context: BrowserContext) -> None:
        await context.expose_binding("__cubekeyMakeCredential", self._handle_make)
        await context.expose_binding("__cubekeyGetAssertion", self._handle_get)
        await context.expose_binding("__cubekeySubmitState", self._handle_state)
        await context.add_init_script(INJECT_SCRIPT)

    async def _handle_make(self, source: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        origin = _origin_of(source)
        return await self._dispatch(
            source,
            lambda request_id: self.engine.register(
                payload.get("publicKey", {}),
                origin,
                site_url=payload.get("url"),
                state_provider=self.provider,
                request_id=request_id,
            ),
        )

    async def _handle_get(self, source: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        origin = _origin_of(source)
        return await self._dispatch(
            source,
            lambda request_id: self.engine.authenticate(
                payload.get("publicKey", {}),
                origin,
                state_provider=self.provider,
                request_id=request_id,
            ),
        )

    async def _handle_state(self, _source: Dict[str, Any], payload: Dict[str, Any]) -> None:
        request_id = payload.get("requestId")
        if not request_id:
            return
        state = payload.get("state")
        if state:
            self.requests.submit(request_id, state)
        else:
            self.requests.cancel(request_id)

    async def _dispatch(self, source: Dict[str, Any], call) -> Dict[str, Any]:
        assert self.provider is not None
        request_id = secrets.token_hex(8)
        self.provider.attach(request_id, source["page"])
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, call, request_id)
        finally:
            self.provider.detach(request_id)


def _origin_of(source: Dict[str, Any]) -> str:
    # taken from the calling frame, never from page-supplied payload fields
    parts = urlsplit(source["frame"].url)
    host = parts.hostname or ""
    if parts.port:
        return f"{parts.scheme}://{host}:{parts.port}"
    return f"{parts.scheme}://{host}"
