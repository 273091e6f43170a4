import time


class TimingData:
  """
  Accumulating stopwatch keyed by pipeline step name. Restarting a key that already has a result continues from the
  stored elapsed time.
  """

  def __init__(self):
    self._data = {}
    self.results = {}

  def start(self, key: str):
    if key in self.results:
      self._data[key] = time.time() - self.results[key]
    else:
      self._data[key] = time.time()

  def stop(self, key: str) -> float:
    if key in self._data:
      result = time.time() - self._data.pop(key)
      self.results[key] = result
      return result
    else:
      return -1

  def get(self, key: str) -> float | None:
    return self.results.get(key)

  def print_summary(self):
    total = sum(self.results.values())
    for key, value in self.results.items():
      print(f"--> {key}: {value:.2f}s")
    print(f"--> total: {total:.2f}s")
