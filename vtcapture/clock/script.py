"""
In-page virtual clock engine.

VIRTUAL_CLOCK_SCRIPT is installed through the render session's
pre-navigation hook so it runs before any page script. It replaces the
page's time sources and timer entry points with versions driven by an
internally held time value, and exposes ``window.__vtclock``:

    goTo(ms)      step forward to ms, firing everything that came due
    advance(ms)   goTo(getTime() + ms)
    getTime()     current virtual time in ms
    pending()     number of live timers/interval/animation-frame callbacks

Replaced entry points: Date (constructor and call form), Date.now,
performance.now, setTimeout, clearTimeout, setInterval, clearInterval,
requestAnimationFrame, cancelAnimationFrame, document.timeline.currentTime,
Element.prototype.animate, Animation.prototype.play/pause/finish/currentTime,
HTMLMediaElement.prototype.play/pause.

Animations follow virtual time until the page holds them with pause() or
finish(), or pauses them through animation-play-state; a held animation
keeps its position and resumes from it on play().

Due callbacks run in three passes per step: one-shot timers, then
animation frames, then intervals (with catch-up). Each pass pops a binary
heap ordered by (scheduled time, registration order). Callbacks registered
during a step wait for the next step.
"""

VIRTUAL_CLOCK_SCRIPT = r"""
(function () {
  'use strict';
  if (window.__vtclock) {
    return;
  }

  var RAF_INTERVAL_MS = 1000 / 60;
  var MIN_INTERVAL_MS = 4;

  var RealDate = Date;
  var installWallTime = RealDate.now();
  var realMediaPlay = window.HTMLMediaElement ? HTMLMediaElement.prototype.play : null;
  var realMediaPause = window.HTMLMediaElement ? HTMLMediaElement.prototype.pause : null;
  var realAnimate = window.Element ? Element.prototype.animate : null;
  var AnimationProto = window.Animation ? Animation.prototype : null;
  var realAnimationPause = AnimationProto ? AnimationProto.pause : null;
  var realAnimationFinish = AnimationProto ? AnimationProto.finish : null;
  var animationCurrentTime = AnimationProto
    ? Object.getOwnPropertyDescriptor(AnimationProto, 'currentTime')
    : null;

  var currentTime = 0;
  var nextId = 1;
  var nextSeq = 1;
  var stepErrors = 0;
  var pending = new Map();
  var animationAnchors = new WeakMap();
  var enginePaused = new WeakSet();
  var pageHeld = new WeakSet();
  var mediaClocks = new Map();

  function TimerHeap() {
    this.items = [];
  }
  function runsBefore(a, b) {
    return a.time < b.time || (a.time === b.time && a.seq < b.seq);
  }
  TimerHeap.prototype.size = function () {
    return this.items.length;
  };
  TimerHeap.prototype.peek = function () {
    return this.items[0];
  };
  TimerHeap.prototype.push = function (entry) {
    var items = this.items;
    items.push(entry);
    var i = items.length - 1;
    while (i > 0) {
      var parent = (i - 1) >> 1;
      if (!runsBefore(items[i], items[parent])) {
        break;
      }
      var swap = items[i];
      items[i] = items[parent];
      items[parent] = swap;
      i = parent;
    }
  };
  TimerHeap.prototype.pop = function () {
    var items = this.items;
    var top = items[0];
    var last = items.pop();
    if (items.length > 0) {
      items[0] = last;
      var i = 0;
      for (;;) {
        var left = 2 * i + 1;
        var right = left + 1;
        var smallest = i;
        if (left < items.length && runsBefore(items[left], items[smallest])) {
          smallest = left;
        }
        if (right < items.length && runsBefore(items[right], items[smallest])) {
          smallest = right;
        }
        if (smallest === i) {
          break;
        }
        var swap = items[i];
        items[i] = items[smallest];
        items[smallest] = swap;
        i = smallest;
      }
    }
    return top;
  };

  var queues = {
    timeout: new TimerHeap(),
    raf: new TimerHeap(),
    interval: new TimerHeap()
  };

  function toCallable(callback) {
    if (typeof callback === 'function') {
      return callback;
    }
    return new Function(String(callback));
  }

  function toDelay(value) {
    var delay = Number(value);
    return Number.isFinite(delay) && delay > 0 ? delay : 0;
  }

  function schedule(kind, callback, time, args, period) {
    var entry = {
      id: nextId++,
      seq: nextSeq++,
      kind: kind,
      time: time,
      callback: callback,
      args: args || [],
      period: period || 0,
      lastFireTime: currentTime
    };
    pending.set(entry.id, entry);
    queues[kind].push(entry);
    return entry.id;
  }

  function cancel(id) {
    pending.delete(Number(id));
  }

  function wallNow() {
    return Math.floor(installWallTime + currentTime);
  }

  // Wall clock reads
  function VirtualDate() {
    if (!(this instanceof VirtualDate)) {
      return new RealDate(wallNow()).toString();
    }
    if (arguments.length === 0) {
      return new RealDate(wallNow());
    }
    var args = Array.prototype.slice.call(arguments);
    return new (Function.prototype.bind.apply(RealDate, [null].concat(args)))();
  }
  VirtualDate.prototype = RealDate.prototype;
  VirtualDate.now = wallNow;
  VirtualDate.parse = RealDate.parse;
  VirtualDate.UTC = RealDate.UTC;
  window.Date = VirtualDate;

  Object.defineProperty(window.performance, 'now', {
    configurable: true,
    writable: true,
    value: function () {
      return currentTime;
    }
  });

  // Timers
  window.setTimeout = function (callback, delay) {
    var args = Array.prototype.slice.call(arguments, 2);
    return schedule('timeout', toCallable(callback), currentTime + toDelay(delay), args, 0);
  };
  window.setInterval = function (callback, delay) {
    var args = Array.prototype.slice.call(arguments, 2);
    var period = Math.max(toDelay(delay), MIN_INTERVAL_MS);
    return schedule('interval', toCallable(callback), currentTime + period, args, period);
  };
  window.requestAnimationFrame = function (callback) {
    return schedule('raf', callback, currentTime + RAF_INTERVAL_MS, null, 0);
  };
  window.clearTimeout = cancel;
  window.clearInterval = cancel;
  window.cancelAnimationFrame = cancel;

  // Declarative animation timelines
  if (document.timeline) {
    try {
      Object.defineProperty(document.timeline, 'currentTime', {
        configurable: true,
        get: function () {
          return currentTime;
        }
      });
    } catch (e) {
      console.warn('[vtclock] document.timeline.currentTime not overridable:', e);
    }
  }

  // Animations seek to anchor.offset + (now - anchor.time) * rate unless the
  // page holds them with pause()/finish() or animation-play-state: paused.
  function anchorAnimation(animation, offset) {
    animationAnchors.set(animation, { time: currentTime, offset: offset });
  }

  if (realAnimate) {
    Element.prototype.animate = function () {
      var animation = realAnimate.apply(this, arguments);
      anchorAnimation(animation, 0);
      return animation;
    };
  }

  if (AnimationProto) {
    AnimationProto.pause = function () {
      pageHeld.add(this);
      enginePaused.delete(this);
      return realAnimationPause.call(this);
    };
    AnimationProto.finish = function () {
      pageHeld.add(this);
      enginePaused.delete(this);
      return realAnimationFinish.call(this);
    };
    AnimationProto.play = function () {
      pageHeld.delete(this);
      var offset = Number(this.currentTime) || 0;
      if (offset >= animationEnd(this) && (this.playbackRate || 1) > 0) {
        offset = 0;
      }
      anchorAnimation(this, offset);
      engineSeek(this, offset);
    };
    if (animationCurrentTime && animationCurrentTime.set) {
      Object.defineProperty(AnimationProto, 'currentTime', {
        configurable: true,
        enumerable: animationCurrentTime.enumerable,
        get: animationCurrentTime.get,
        set: function (value) {
          animationCurrentTime.set.call(this, value);
          if (!pageHeld.has(this)) {
            anchorAnimation(this, Number(value) || 0);
          }
        }
      });
    }
  }

  function animationEnd(animation) {
    try {
      return animation.effect ? animation.effect.getComputedTiming().endTime : Infinity;
    } catch (e) {
      return Infinity;
    }
  }

  function cssPaused(animation) {
    if (!window.CSSAnimation || !(animation instanceof CSSAnimation)) {
      return false;
    }
    var effect = animation.effect;
    if (!effect || !effect.target) {
      return false;
    }
    var style = window.getComputedStyle(effect.target, effect.pseudoElement || null);
    var names = style.animationName.split(',').map(function (s) { return s.trim(); });
    var states = style.animationPlayState.split(',').map(function (s) { return s.trim(); });
    var index = names.indexOf(animation.animationName);
    if (index < 0) {
      return false;
    }
    return states[index % states.length] === 'paused';
  }

  function engineSeek(animation, offset) {
    if (!enginePaused.has(animation) || animation.playState !== 'paused') {
      realAnimationPause.call(animation);
      enginePaused.add(animation);
    }
    animationCurrentTime.set.call(animation, offset);
  }

  function syncAnimations() {
    if (typeof document.getAnimations !== 'function' || !AnimationProto) {
      return;
    }
    var animations = document.getAnimations();
    for (var i = 0; i < animations.length; i++) {
      var animation = animations[i];
      if (pageHeld.has(animation)) {
        continue;
      }
      var anchor = animationAnchors.get(animation);
      try {
        if (cssPaused(animation)) {
          anchorAnimation(animation, anchor ? Number(animation.currentTime) || 0 : 0);
          continue;
        }
        if (!anchor) {
          anchor = { time: currentTime, offset: 0 };
          animationAnchors.set(animation, anchor);
        }
        engineSeek(animation, anchor.offset + (currentTime - anchor.time) * (animation.playbackRate || 1));
      } catch (e) {
        console.warn('[vtclock] could not seek animation:', e);
      }
    }
  }

  // Media playback clocks
  if (realMediaPlay && realMediaPause) {
    HTMLMediaElement.prototype.play = function () {
      if (!mediaClocks.has(this)) {
        mediaClocks.set(this, { start: currentTime, offset: this.currentTime || 0 });
      }
      realMediaPause.call(this);
      return Promise.resolve();
    };
    HTMLMediaElement.prototype.pause = function () {
      mediaClocks.delete(this);
      return realMediaPause.call(this);
    };
  }

  function runCallback(entry, args) {
    try {
      entry.callback.apply(window, args);
    } catch (e) {
      stepErrors += 1;
      console.error('[vtclock] ' + entry.kind + ' callback ' + entry.id + ' failed:', e);
    }
  }

  function runDue(kind, target, stepSeq) {
    var heap = queues[kind];
    var deferred = [];
    var fired = 0;
    while (heap.size() > 0 && heap.peek().time <= target) {
      var entry = heap.pop();
      if (pending.get(entry.id) !== entry) {
        continue;
      }
      if (entry.seq >= stepSeq) {
        deferred.push(entry);
        continue;
      }
      fired += 1;
      if (kind === 'interval') {
        entry.lastFireTime += entry.period;
        entry.time = entry.lastFireTime + entry.period;
        runCallback(entry, entry.args);
        if (pending.get(entry.id) === entry) {
          heap.push(entry);
        }
      } else {
        pending.delete(entry.id);
        runCallback(entry, kind === 'raf' ? [currentTime] : entry.args);
      }
    }
    for (var i = 0; i < deferred.length; i++) {
      heap.push(deferred[i]);
    }
    return fired;
  }

  function syncMedia() {
    mediaClocks.forEach(function (clock, element) {
      try {
        element.currentTime = clock.offset + ((currentTime - clock.start) / 1000) * (element.playbackRate || 1);
      } catch (e) {
        console.warn('[vtclock] could not seek media element:', e);
      }
    });
  }

  function goTo(target) {
    target = Number(target);
    if (!Number.isFinite(target)) {
      console.warn('[vtclock] ignoring non-numeric target', target);
      return { ok: false, time: currentTime, fired: 0, errors: 0 };
    }
    if (target < currentTime) {
      console.warn('[vtclock] cannot go back in virtual time: ' + target + ' < ' + currentTime);
      return { ok: false, time: currentTime, fired: 0, errors: 0 };
    }
    var previous = currentTime;
    var stepSeq = nextSeq;
    currentTime = target;
    stepErrors = 0;

    var fired = runDue('timeout', target, stepSeq);
    fired += runDue('raf', target, stepSeq);
    fired += runDue('interval', target, stepSeq);

    syncAnimations();
    syncMedia();
    try {
      window.dispatchEvent(new CustomEvent('virtual-time-update', {
        detail: { oldTime: previous, newTime: currentTime }
      }));
    } catch (e) {
      console.warn('[vtclock] virtual-time-update listener failed:', e);
    }
    return { ok: true, time: currentTime, fired: fired, errors: stepErrors };
  }

  window.__vtclock = Object.freeze({
    goTo: goTo,
    advance: function (ms) {
      return goTo(currentTime + toDelay(ms));
    },
    getTime: function () {
      return currentTime;
    },
    pending: function () {
      return pending.size;
    }
  });
})();
"""

GO_TO_EXPRESSION = (
    "(ms) => window.__vtclock ? window.__vtclock.goTo(ms) : null"
)

GET_TIME_EXPRESSION = (
    "() => window.__vtclock ? window.__vtclock.getTime() : null"
)
