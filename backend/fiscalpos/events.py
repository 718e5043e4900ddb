"""
Application signals (blinker, the dispatcher Flask's own signals use).

document_issued is sent after a document's authorization is committed:

    document_issued.send(app, document_type="SALE", document_id=12, result=EmissionResult(...))

Receivers must not raise; the emission is already final when they run.
"""

from blinker import Namespace


_signals = Namespace()

document_issued = _signals.signal("document-issued")
