import logging


class CompensationStack:
    """
    Undo actions for saga steps that already committed.

    Push an undo right after its step succeeds; on a later failure, unwind()
    runs them newest first. Undo failures are logged and not reported.
    """

    def __init__(self, saga_name: str):
        self.saga_name = saga_name
        self._undo = []

    def push(self, step_name: str, undo):
        self._undo.append((step_name, undo))

    def __len__(self):
        return len(self._undo)

    async def unwind(self):
        while self._undo:
            step_name, undo = self._undo.pop()
            logging.info(f"{self.saga_name}: compensating '{step_name}'")
            try:
                await undo()
            except Exception as e:
                logging.error(f"{self.saga_name}: compensation for '{step_name}' failed: {e}")
